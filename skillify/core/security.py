import hashlib
import secrets
from datetime import timedelta
from typing import Any, Dict, Iterable

import bcrypt
import jwt

from skillify.core.settings import settings
from skillify.libs.formats.datetime import now_tzinfo


class SecurityService:
    def __init__(self):
        self.secret_key = settings.SECRET_KEY
        self.algorithm = settings.ALGORITHM
        self.access_token_expire_minutes = float(settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_token_expire_days = float(settings.REFRESH_TOKEN_EXPIRE_DAYS)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    # 🔐 JWT
    def _encode(self, payload: Dict[str, Any], expires: timedelta, secret: str | None = None) -> str:
        issued = now_tzinfo()
        body = {**payload, "iat": issued, "exp": issued + expires}
        return str(jwt.encode(body, secret or self.secret_key, algorithm=self.algorithm))

    def _decode(self, token: str, secret: str | None = None) -> Dict[str, Any]:
        try:
            return jwt.decode(token, secret or self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise ValueError("Token expired")
        except jwt.InvalidTokenError:
            raise ValueError("Invalid token")

    async def create_access_token(self, sub: str, roles: Iterable[str] = ()) -> str:
        return self._encode(
            {"sub": sub, "roles": sorted(roles), "type": "access"},
            timedelta(minutes=self.access_token_expire_minutes),
        )

    async def create_refresh_token(self, sub: str) -> str:
        return self._encode(
            {"sub": sub, "type": "refresh"},
            timedelta(days=self.refresh_token_expire_days),
        )

    async def decode_access_token(self, token: str) -> Dict[str, Any]:
        payload = self._decode(token)
        if payload.get("type") != "access":
            raise ValueError("Invalid token")
        return payload

    async def decode_refresh_token(self, token: str) -> Dict[str, Any]:
        payload = self._decode(token)
        if payload.get("type") != "refresh":
            raise ValueError("Invalid token")
        return payload

    # ✉️ ADMIN INVITE
    async def create_admin_invite_token(self, email: str, issued_by: str) -> str:
        return self._encode(
            {"email": email, "role": "admin", "issued_by": issued_by},
            timedelta(minutes=settings.ADMIN_INVITE_EXPIRE_MINUTES),
            secret=settings.ADMIN_INVITE_SECRET,
        )

    async def decode_admin_invite_token(self, token: str) -> Dict[str, Any]:
        return self._decode(token, secret=settings.ADMIN_INVITE_SECRET)

    # 🔑 PASSWORD
    @staticmethod
    async def hash_password(plain: str) -> str:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    async def verify_password(plain: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    # 🔢 OTP / one-time tokens
    @staticmethod
    async def generate_otp() -> str:
        return str(secrets.randbelow(10**6)).zfill(6)

    @staticmethod
    async def generate_url_token() -> str:
        return secrets.token_urlsafe(32)

    @staticmethod
    def hash_secret(value: str) -> str:
        """OTPs and reset tokens are stored as sha256 digests only."""
        return hashlib.sha256(value.encode("utf-8")).hexdigest()
