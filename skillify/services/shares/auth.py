from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any

from fastapi import BackgroundTasks, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from google.auth import exceptions as google_exceptions
from google.auth.transport import requests
from google.oauth2 import id_token
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import desc

from skillify.core.enum import RoleName
from skillify.core.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    Unauthorized,
    ValidationError,
)
from skillify.core.security import SecurityService
from skillify.core.settings import settings
from skillify.db.models.database import EmailVerifications, PasswordResets, User, UserRoles
from skillify.db.models.init_db import get_or_create_role
from skillify.db.session import get_session
from skillify.libs.formats.datetime import now as get_now
from skillify.schemas.auth.user import (
    ChangeRole,
    ForgotPassword,
    GoogleLogin,
    LoginUser,
    RegisterInit,
    RegisterVerify,
    ResetPassword,
    SelectRole,
)
from skillify.services.shares.cache_policy import CacheKeys, CachePolicy, get_cache_policy
from skillify.services.shares.mailer import MailerService, get_mailer_service
from skillify.services.shares.presenters import user_profile

FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a reset link has been sent"


async def grant_role(db: AsyncSession, user: User, role_name: str) -> bool:
    """Add a role to the user's set; False when already held."""
    if user.has_role(role_name):
        return False
    role = await get_or_create_role(db, role_name)
    user.user_roles.append(UserRoles(role=role))
    return True


async def issue_tokens(security: SecurityService, user: User, res: Response) -> str:
    """Access token in the body and a cookie; refresh token in an http-only cookie."""
    access_token = await security.create_access_token(str(user.id), user.roles)
    refresh_token = await security.create_refresh_token(str(user.id))
    res.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
    )
    res.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        path="/",
    )
    return access_token


class AuthService:
    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        security: SecurityService = Depends(SecurityService),
        mail_service: MailerService = Depends(get_mailer_service),
        cache: CachePolicy = Depends(get_cache_policy),
    ):
        self.db = db
        self.security = security
        self.mail_service = mail_service
        self.cache = cache

    async def _get_user_by_email(self, email: str) -> User | None:
        return await self.db.scalar(select(User).where(User.email == email))

    async def _session_payload(self, user: User, res: Response) -> dict[str, Any]:
        access_token = await issue_tokens(self.security, user, res)
        return {"access_token": access_token, "user": user_profile(user)}

    # ======================================================
    # REGISTRATION (OTP)
    # ======================================================
    async def register_init_async(
        self, schema: RegisterInit, background_tasks: BackgroundTasks
    ) -> dict[str, Any]:
        try:
            user = await self._get_user_by_email(schema.email)
            if user and user.is_verified_email:
                raise Conflict("User already exists")

            password_hash = await self.security.hash_password(schema.password)
            if user:
                user.name = schema.name
                user.password = password_hash
            else:
                user = User(
                    name=schema.name,
                    email=schema.email,
                    password=password_hash,
                    user_roles=[],
                )
                self.db.add(user)
                await self.db.flush()

            # only the latest code stays usable
            await self.db.execute(
                update(EmailVerifications)
                .where(
                    EmailVerifications.user_id == user.id,
                    EmailVerifications.is_used.is_(False),
                )
                .values(is_used=True)
            )
            code = await self.security.generate_otp()
            self.db.add(
                EmailVerifications(
                    user_id=user.id,
                    code_hash=self.security.hash_secret(code),
                    expired_at=get_now() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES),
                )
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        background_tasks.add_task(
            self.mail_service.send_verification_email, user.email, user.name, code
        )
        logger.info(f"Registration OTP issued for {user.email}")
        return {"message": "OTP sent to your email", "email": user.email}

    async def register_verify_async(self, schema: RegisterVerify, res: Response):
        try:
            user = await self._get_user_by_email(schema.email)
            if not user:
                raise NotFound("User not found")
            if user.is_verified_email:
                raise Conflict("Email already verified")

            verification = (
                await self.db.scalars(
                    select(EmailVerifications)
                    .where(
                        EmailVerifications.user_id == user.id,
                        EmailVerifications.is_used.is_(False),
                    )
                    .order_by(desc(EmailVerifications.created_at))
                )
            ).first()
            if (
                not verification
                or verification.expired_at < get_now()
                or verification.code_hash != self.security.hash_secret(schema.otp)
            ):
                raise ValidationError("Invalid or expired OTP")

            verification.is_used = True
            user.is_verified_email = True
            user.email_verified_at = get_now()
            await grant_role(self.db, user, RoleName.USER.value)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Email verified for {user.email}")
        return await self._session_payload(user, res)

    # ======================================================
    # SESSION
    # ======================================================
    async def login_async(self, schema: LoginUser, res: Response):
        user = await self._get_user_by_email(schema.email)
        if not user:
            raise NotFound("User not found")
        if not user.password or not await self.security.verify_password(
            schema.password, user.password
        ):
            raise Unauthorized("Invalid credentials")
        if not user.is_verified_email:
            raise Forbidden("Please verify your email before logging in")

        user.last_login_at = get_now()
        await self.db.commit()
        return await self._session_payload(user, res)

    async def refresh_async(self, request: Request, res: Response):
        token = request.cookies.get("refresh_token")
        if not token:
            raise Unauthorized("No refresh token")
        try:
            payload = await self.security.decode_refresh_token(token)
            user_id = uuid.UUID(str(payload.get("sub")))
        except ValueError:
            raise Unauthorized("Invalid or expired refresh token")

        user = await self.db.get(User, user_id)
        if not user:
            raise Unauthorized("User not found")
        return await self._session_payload(user, res)

    async def logout_async(self, res: Response):
        for key in ("access_token", "refresh_token"):
            res.delete_cookie(
                key=key,
                path="/",
                httponly=True,
                secure=settings.COOKIE_SECURE,
                samesite="lax",
            )
        return {"message": "Logged out"}

    async def profile_async(self, user: User):
        async def load():
            return user_profile(user)

        return await self.cache.read_through(CacheKeys.user_profile(user.id), load)

    # ======================================================
    # ROLES
    # ======================================================
    async def select_role_async(self, user: User, schema: SelectRole, res: Response):
        """One-time onboarding choice between student and instructor."""
        if user.profile_completed:
            raise InvalidState("Role already selected")
        try:
            await grant_role(self.db, user, schema.role)
            user.profile_completed = True
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.on_user_changed(user.id)
        return await self._session_payload(user, res)

    async def change_role_async(self, admin: User, schema: ChangeRole):
        target = await self.db.get(User, schema.user_id)
        if not target:
            raise NotFound("User not found")
        if (
            target.id == admin.id
            and schema.action == "remove"
            and schema.role == RoleName.ADMIN.value
        ):
            raise Forbidden("You cannot remove your own admin role")

        try:
            if schema.action == "add":
                await grant_role(self.db, target, schema.role)
            else:
                for link in list(target.user_roles):
                    if link.role and link.role.role_name == schema.role:
                        target.user_roles.remove(link)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Admin {admin.id} {schema.action} role {schema.role} for {target.id}")
        await self.cache.on_user_changed(target.id)
        return user_profile(target)

    # ======================================================
    # GOOGLE
    # ======================================================
    async def login_google_async(self, schema: GoogleLogin, res: Response):
        try:
            info = await run_in_threadpool(
                id_token.verify_oauth2_token,
                schema.credential,
                requests.Request(),
                settings.GOOGLE_CLIENT_ID,
            )
        except (ValueError, google_exceptions.GoogleAuthError) as e:
            logger.warning(f"Google token rejected: {e}")
            raise Unauthorized("Invalid Google token")

        email = (info.get("email") or "").lower()
        if not email:
            raise ValidationError("Google did not return an email")
        if str(info.get("email_verified")).lower() != "true":
            logger.warning(f"Google sign-in refused for unverified email {email}")
            raise Unauthorized("Google email is not verified")

        try:
            user = await self._get_user_by_email(email)
            if not user:
                user = User(
                    name=info.get("name") or email.split("@")[0],
                    email=email,
                    google_uid=info.get("sub"),
                    avatar=info.get("picture"),
                    is_verified_email=True,
                    email_verified_at=get_now(),
                    user_roles=[],
                )
                self.db.add(user)
                await self.db.flush()
                await grant_role(self.db, user, RoleName.USER.value)
            else:
                user.google_uid = user.google_uid or info.get("sub")
                user.avatar = user.avatar or info.get("picture")
                if not user.is_verified_email:
                    user.is_verified_email = True
                    user.email_verified_at = get_now()
                    await grant_role(self.db, user, RoleName.USER.value)
            user.last_login_at = get_now()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.on_user_changed(user.id)
        return await self._session_payload(user, res)

    # ======================================================
    # PASSWORD RESET
    # ======================================================
    async def forgot_password_async(
        self, schema: ForgotPassword, background_tasks: BackgroundTasks
    ):
        """Same answer whether or not the account exists."""
        user = await self._get_user_by_email(schema.email)
        if not user:
            logger.info(f"Password reset requested for unknown email {schema.email}")
            return {"message": FORGOT_PASSWORD_MESSAGE}

        token = await self.security.generate_url_token()
        self.db.add(
            PasswordResets(
                user_id=user.id,
                token_hash=self.security.hash_secret(token),
                expired_at=get_now() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES),
            )
        )
        await self.db.commit()

        reset_link = f"{settings.FRONTEND_URL}/reset-password/{token}"
        background_tasks.add_task(
            self.mail_service.send_reset_password_email, user.email, user.name, reset_link
        )
        return {"message": FORGOT_PASSWORD_MESSAGE}

    async def reset_password_async(self, token: str, schema: ResetPassword):
        reset = await self.db.scalar(
            select(PasswordResets).where(
                PasswordResets.token_hash == self.security.hash_secret(token),
                PasswordResets.is_used.is_(False),
            )
        )
        if not reset or reset.expired_at < get_now():
            raise ValidationError("Invalid or expired reset token")

        user = await self.db.get(User, reset.user_id)
        if not user:
            raise NotFound("User not found")

        user.password = await self.security.hash_password(schema.password)
        reset.is_used = True
        await self.db.commit()

        logger.info(f"Password reset for {user.email}")
        return {"message": "Password reset successful"}
