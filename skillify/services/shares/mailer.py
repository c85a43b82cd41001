# skillify/services/shares/mailer.py
from pathlib import Path

from fastapi import Request
from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType
from loguru import logger
from pydantic import SecretStr

from skillify.core.settings import settings


class MailerService:
    """System mails (OTP, password reset, invites, ticket updates).

    Sends are fire-and-forget: they run as background tasks and a failure is
    logged, never raised back into the workflow that triggered it.
    """

    def __init__(self, fastmail: FastMail | None = None):
        base_dir = Path(__file__).resolve().parent.parent.parent  # -> skillify/
        template_dir = base_dir / "templates" / "emails"

        self.conf = ConnectionConfig(
            MAIL_USERNAME=settings.MAIL_USERNAME,
            MAIL_PASSWORD=SecretStr(settings.MAIL_PASSWORD),
            MAIL_FROM=settings.MAIL_FROM,
            MAIL_FROM_NAME=settings.MAIL_FROM_NAME,
            MAIL_PORT=settings.MAIL_PORT,
            MAIL_SERVER=settings.MAIL_SERVER,
            MAIL_STARTTLS=settings.MAIL_TLS,
            MAIL_SSL_TLS=settings.MAIL_SSL,
            USE_CREDENTIALS=bool(settings.MAIL_USERNAME),
            VALIDATE_CERTS=True,
            TIMEOUT=settings.MAIL_TIMEOUT,
            TEMPLATE_FOLDER=template_dir,
        )
        self.fastmail = fastmail or FastMail(self.conf)

    async def send_template(
        self, subject: str, recipients: list[str], template_name: str, context: dict
    ) -> bool:
        message = MessageSchema(
            subject=subject,
            recipients=recipients,
            template_body=context,
            subtype=MessageType.html,
        )
        try:
            await self.fastmail.send_message(message, template_name=template_name)
        except Exception as e:
            logger.error(f"Mail '{subject}' to {', '.join(recipients)} failed: {e}")
            return False
        logger.info(f"Mail '{subject}' sent to {', '.join(recipients)}")
        return True

    async def send_verification_email(self, email: str, name: str, code: str):
        return await self.send_template(
            "Verify your email",
            [email],
            "verify_email.html",
            {"name": name, "code": code, "minutes": settings.OTP_EXPIRE_MINUTES},
        )

    async def send_reset_password_email(self, email: str, name: str, reset_link: str):
        return await self.send_template(
            "Reset your password",
            [email],
            "reset_password.html",
            {
                "name": name,
                "reset_link": reset_link,
                "minutes": settings.RESET_TOKEN_EXPIRE_MINUTES,
            },
        )

    async def send_admin_invite_email(self, email: str, invite_link: str):
        return await self.send_template(
            "Admin Invitation, Skillify",
            [email],
            "admin_invite.html",
            {"invite_link": invite_link, "minutes": settings.ADMIN_INVITE_EXPIRE_MINUTES},
        )

    async def send_ticket_created_email(self, email: str, ticket_id: str, requested_role: str):
        return await self.send_template(
            "Role change request received",
            [email],
            "ticket_created.html",
            {"ticket_id": ticket_id, "requested_role": requested_role},
        )

    async def send_ticket_approved_email(self, email: str, requested_role: str):
        return await self.send_template(
            "Role upgrade approved",
            [email],
            "ticket_approved.html",
            {"requested_role": requested_role},
        )

    async def send_ticket_rejected_email(self, email: str, requested_role: str):
        return await self.send_template(
            "Role upgrade rejected",
            [email],
            "ticket_rejected.html",
            {"requested_role": requested_role},
        )


def get_mailer_service(request: Request) -> MailerService:
    return request.app.state.mailer
