import re
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional


def validate_password_strength(password: str) -> str:
    """
    パスワード強度チェック
    - 8文字以上
    - 英字と数字を両方含む
    """
    if len(password) < 8:
        raise ValueError("パスワードは8文字以上で入力してください")
    if not re.search(r"[A-Za-z]", password) or not re.search(r"[0-9]", password):
        raise ValueError("パスワードは英字と数字を両方含めてください")
    return password


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, v: str) -> str:
        return validate_password_strength(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)


class AuthResponse(BaseModel):
    message: str
    user_id: Optional[int] = None
    csrf_token: Optional[str] = None


class UserInfo(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    stripe_customer_id: Optional[str] = None

    model_config = {"from_attributes": True}
