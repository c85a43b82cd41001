from fastapi import BackgroundTasks, Depends, Response
from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.core.enum import RoleName
from skillify.core.errors import Conflict, Forbidden, ValidationError
from skillify.core.security import SecurityService
from skillify.core.settings import settings
from skillify.db.models.database import Role, User, UserRoles
from skillify.db.session import get_session
from skillify.schemas.admin.invite import AcceptInvite, AdminInvite
from skillify.services.shares.auth import grant_role, issue_tokens
from skillify.services.shares.cache_policy import CachePolicy, get_cache_policy
from skillify.services.shares.mailer import MailerService, get_mailer_service
from skillify.services.shares.presenters import user_profile


class AdminService:
    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        security: SecurityService = Depends(SecurityService),
        mailer: MailerService = Depends(get_mailer_service),
        cache: CachePolicy = Depends(get_cache_policy),
    ):
        self.db = db
        self.security = security
        self.mailer = mailer
        self.cache = cache

    async def invite_admin_async(
        self, admin: User, schema: AdminInvite, background_tasks: BackgroundTasks
    ):
        invitee = await self.db.scalar(select(User).where(User.email == schema.email))
        if invitee and invitee.has_role(RoleName.ADMIN.value):
            raise Conflict("User is already an admin")

        token = await self.security.create_admin_invite_token(schema.email, str(admin.id))
        invite_link = f"{settings.FRONTEND_URL}/admin/accept-invite?token={token}"
        background_tasks.add_task(
            self.mailer.send_admin_invite_email, schema.email, invite_link
        )
        logger.info(f"Admin {admin.id} invited {schema.email}")
        return {"message": f"Invitation sent to {schema.email}"}

    async def accept_invite_async(self, user: User, schema: AcceptInvite, res: Response):
        try:
            payload = await self.security.decode_admin_invite_token(schema.token)
        except ValueError:
            raise ValidationError("Invalid or expired invitation")

        if (payload.get("email") or "").lower() != user.email:
            raise Forbidden("This invitation was issued for another account")
        if user.has_role(RoleName.ADMIN.value):
            raise Conflict("You are already an admin")

        try:
            await grant_role(self.db, user, RoleName.ADMIN.value)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"{user.email} accepted the admin invitation of {payload.get('issued_by')}")
        await self.cache.on_user_changed(user.id)
        access_token = await issue_tokens(self.security, user, res)
        return {"access_token": access_token, "user": user_profile(user)}

    async def get_roles_count_async(self):
        rows = (
            await self.db.execute(
                select(Role.role_name, func.count(UserRoles.id))
                .join(UserRoles, UserRoles.role_id == Role.id, isouter=True)
                .group_by(Role.role_name)
            )
        ).all()
        counts = {role.value: 0 for role in RoleName}
        counts.update({name: total for name, total in rows})
        return {"roles": counts, "total_users": await self.db.scalar(select(func.count(User.id)))}
