import re
import uuid
from typing import Annotated, Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

PASSWORD_RULES = (
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"\d"), "a digit"),
    (re.compile(r"[^A-Za-z0-9]"), "a special character"),
)


def check_password_strength(value: str) -> str:
    missing = [label for pattern, label in PASSWORD_RULES if not pattern.search(value)]
    if missing:
        raise ValueError("Password must contain " + ", ".join(missing))
    return value


class RegisterInit(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=120)]
    email: EmailStr
    password: Annotated[str, Field(min_length=8, max_length=72)]

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return check_password_strength(value)


class RegisterVerify(BaseModel):
    email: EmailStr
    otp: Annotated[str, Field(min_length=6, max_length=6)]

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginUser(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class SelectRole(BaseModel):
    role: Literal["student", "instructor"]


class ChangeRole(BaseModel):
    user_id: uuid.UUID
    role: Literal["admin", "instructor", "student", "user"]
    action: Literal["add", "remove"] = "add"


class GoogleLogin(BaseModel):
    credential: str


class ForgotPassword(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class ResetPassword(BaseModel):
    password: Annotated[str, Field(min_length=8, max_length=72)]

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return check_password_strength(value)
