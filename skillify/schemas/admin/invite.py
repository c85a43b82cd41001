from pydantic import BaseModel, EmailStr, field_validator


class AdminInvite(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.strip().lower()


class AcceptInvite(BaseModel):
    token: str
