# skillify/core/deps.py
import uuid
from typing import List, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.core.context import get_request
from skillify.core.enum import RoleName
from skillify.core.errors import Forbidden, Unauthorized
from skillify.core.security import SecurityService
from skillify.db.models.database import User
from skillify.db.session import get_session


def extract_token(request) -> Optional[str]:
    """Bearer header first, then the access_token cookie."""
    header = request.headers.get("authorization")
    if header and header.lower().startswith("bearer "):
        return header.split(" ", 1)[1].strip() or None
    return request.cookies.get("access_token")


class AuthorizationService:
    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        security: SecurityService = Depends(SecurityService),
    ):
        self.db = db
        self.security = security

    # ==============================
    # CORE AUTH CHECKS
    # ==============================
    async def get_current_user(self) -> User:
        """Current user from the access token; roles always come from the store."""
        token = extract_token(get_request())
        if not token:
            raise Unauthorized("No access token")

        try:
            payload = await self.security.decode_access_token(token)
            user_id = uuid.UUID(str(payload.get("sub")))
        except ValueError:
            raise Unauthorized("Invalid or expired access token")

        user = await self.db.get(User, user_id)
        if not user:
            raise Unauthorized("User not found")
        return user

    # ==============================
    # ROLE-BASED ACCESS CONTROL
    # ==============================
    async def require_role(self, required_roles: Optional[List[str]] = None) -> User:
        """Admins pass every role check; others need one of required_roles."""
        current_user = await self.get_current_user()
        if not required_roles:
            return current_user

        roles = current_user.roles
        if RoleName.ADMIN.value in roles:
            return current_user
        if not any(role in roles for role in required_roles):
            raise Forbidden("Forbidden!")
        return current_user
