from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """アプリケーション設定"""

    # データベース
    DATABASE_URL: str = "mysql+pymysql://boxuser:boxpassword@db:3306/box_service?charset=utf8mb4"

    # Redis (セッション・CSRF)
    REDIS_URL: str = "redis://redis:6379/0"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_TIMEOUT_SECONDS: int = 10
    # True の場合のみオフライン用のモックゲートウェイを使用 (本番では必ず False)
    STRIPE_TEST_MODE: bool = False

    # 決済通貨
    PAYMENT_CURRENCY: str = "usd"

    # サービス設定
    SITE_NAME: str = "Subscription Box"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001"

    # セッション
    SESSION_TIMEOUT_MINUTES: int = 60 * 24 * 7

    # スケジューラ
    RECONCILE_INTERVAL_MINUTES: int = 15

    # 環境
    ENV: str = "development"
    DEBUG: bool = False

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
