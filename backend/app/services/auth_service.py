"""認証ビジネスロジック"""
import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Optional

from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.models.user import User
from app.services.stripe_service import StripeGateway

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 8


class EmailAlreadyRegistered(ValidationError):
    message = "このメールアドレスは既に登録されています"


def hash_password(password: str) -> str:
    """パスワードをbcryptでハッシュ化"""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """パスワードを検証"""
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def register_user(
    db: Session,
    gateway: StripeGateway,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
) -> User:
    """新規ユーザー登録: Stripe Customer 作成 → ユーザー保存

    Customer 作成に失敗した場合はユーザーを作成しない。
    """
    email = normalize_email(email)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"パスワードは{MIN_PASSWORD_LENGTH}文字以上で入力してください")
    if get_user_by_email(db, email):
        raise EmailAlreadyRegistered()

    customer_id = gateway.create_customer(email, f"{first_name} {last_name}")

    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        stripe_customer_id=customer_id,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # 同一メールの同時登録。Stripe Customer は孤立するが課金は発生しない
        logger.warning(f"ユーザー登録競合: email={email}, stripe_customer_id={customer_id}")
        raise EmailAlreadyRegistered()
    db.refresh(user)
    logger.info(f"ユーザー作成: user_id={user.id}, email={email}")
    return user


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    user = get_user_by_email(db, normalize_email(email))
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def update_profile(db: Session, user: User, first_name: Optional[str], last_name: Optional[str]) -> User:
    """プロフィール更新 (指定された項目のみ)"""
    if first_name is not None:
        user.first_name = first_name
    if last_name is not None:
        user.last_name = last_name
    db.commit()
    db.refresh(user)
    return user


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()
