"""ドメイン例外: APIレイヤーでHTTPレスポンスに変換される

message はクライアントに返してよい文言のみ。Stripe側のエラー詳細は
ログにのみ出力し、message には含めない。
"""
from typing import Optional


class AppError(Exception):
    """アプリケーション例外の基底クラス"""

    status_code = 500
    message = "処理中にエラーが発生しました"

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)


class ValidationError(AppError):
    """入力値不正"""

    status_code = 400
    message = "入力値が不正です"


class NotFound(AppError):
    """対象エンティティなし"""

    status_code = 404
    message = "対象が見つかりません"


class SubscriptionNotFound(NotFound):
    message = "有効な購読が見つかりません"


class DuplicateActiveSubscription(AppError):
    """有効な購読が既に存在する (1ユーザー1購読)"""

    status_code = 409
    message = "既に有効な購読があります"


class ProcessorError(AppError):
    """決済代行 (Stripe) 起因のエラー"""

    retryable = False


class ProcessorUnavailable(ProcessorError):
    """通信障害・タイムアウト等 (再試行可能)"""

    status_code = 503
    message = "決済システムに接続できません。しばらくしてから再度お試しください"
    retryable = True

    def __init__(self, message: Optional[str] = None, outcome_unknown: bool = False, **context):
        # outcome_unknown: リクエストがStripeに届いたか不明 (作成済みの可能性あり)
        self.outcome_unknown = outcome_unknown
        super().__init__(message, **context)


class ProcessorRejected(ProcessorError):
    """カード拒否等 (再試行しても結果は変わらない)"""

    status_code = 402
    message = "お支払いが拒否されました。別のお支払い方法をご利用ください"


class ProcessorInvalidInput(ProcessorError, ValidationError):
    """Stripeがリクエストを不正と判定"""

    status_code = 400
    message = "お支払い情報が不正です"


class InvalidSignature(AppError):
    """Webhook署名検証失敗"""

    status_code = 400
    message = "Invalid signature"


class ReconciliationRequired(AppError):
    """Stripeとローカルの状態が不整合 (部分失敗後)。自動リトライせず照合スイープで解消"""

    status_code = 502
    message = "購読の登録処理を完了できませんでした。サポートまでお問い合わせください"

    def __init__(self, message: Optional[str] = None, external_id: Optional[str] = None, **context):
        self.external_id = external_id
        super().__init__(message, **context)


class StorageError(AppError):
    """DBエラー (当該リクエストは失敗扱い)"""

    status_code = 500
    message = "処理中にエラーが発生しました"
