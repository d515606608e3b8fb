"""Scheduler エントリポイント: python -m app.scheduler で起動"""
import signal
import sys
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.scheduler.reconcile_sweep import run_reconcile_sweep

setup_logging(debug=settings.DEBUG)
logger = get_logger("scheduler")

scheduler = BlockingScheduler(timezone="UTC")


def signal_handler(sig, frame):
    logger.info("Scheduler停止シグナル受信")
    scheduler.shutdown(wait=False)
    sys.exit(0)


signal.signal(signal.SIGTERM, signal_handler)
signal.signal(signal.SIGINT, signal_handler)


def reconcile_job():
    try:
        run_reconcile_sweep()
    except Exception:
        logger.exception("照合スイープエラー")


def main():
    logger.info("Scheduler起動")

    if settings.STRIPE_TEST_MODE:
        # モックゲートウェイは購読を取得できないため照合しない
        logger.warning("STRIPE_TEST_MODE有効: 照合スイープを登録しません")
    else:
        scheduler.add_job(
            reconcile_job,
            CronTrigger(minute=f"*/{settings.RECONCILE_INTERVAL_MINUTES}", timezone="UTC"),
            id="reconcile_sweep",
            max_instances=1,
        )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler終了")


if __name__ == "__main__":
    main()
