import uuid

from fastapi import BackgroundTasks, Depends
from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.core.enum import SELF_SERVICE_ROLES, TicketStatus
from skillify.core.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    UpstreamError,
    ValidationError,
)
from skillify.db.models.database import Tickets, User, UserRoles
from skillify.db.models.init_db import get_or_create_role
from skillify.db.session import get_session
from skillify.libs.formats.datetime import now
from skillify.schemas.shares.ticket import CreateTicket
from skillify.services.shares.cache_policy import CachePolicy, get_cache_policy
from skillify.services.shares.mailer import MailerService, get_mailer_service
from skillify.services.shares.presenters import ticket_dict

PAGE_SIZE = 10
RESOLUTIONS = {TicketStatus.APPROVED.value, TicketStatus.REJECTED.value}


class TicketService:
    """
    Role upgrade requests.
    created → approved | rejected, both terminal. At most one created ticket
    per user (partial unique index). Resolution is a conditional update on
    status = 'created', so only one concurrent resolver wins.
    """

    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        cache: CachePolicy = Depends(get_cache_policy),
        mailer: MailerService = Depends(get_mailer_service),
    ):
        self.db = db
        self.cache = cache
        self.mailer = mailer

    async def create_ticket_async(
        self, user: User, schema: CreateTicket, background_tasks: BackgroundTasks
    ):
        requested_role = schema.requested_role.strip().lower()
        if requested_role not in SELF_SERVICE_ROLES:
            raise ValidationError("Invalid role requested")
        if user.has_role(requested_role):
            raise Conflict(f"You already have the {requested_role} role")

        open_ticket = await self.db.scalar(
            select(Tickets.id).where(
                Tickets.user_id == user.id,
                Tickets.status == TicketStatus.CREATED.value,
            )
        )
        if open_ticket:
            raise Conflict("You already have an open ticket")

        ticket = Tickets(
            user=user,
            current_roles=sorted(user.roles),
            requested_role=requested_role,
            status=TicketStatus.CREATED.value,
        )
        self.db.add(ticket)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("You already have an open ticket")

        logger.info(f"Ticket {ticket.id} opened by {user.id} for role {requested_role}")
        background_tasks.add_task(
            self.mailer.send_ticket_created_email,
            user.email,
            str(ticket.id),
            requested_role,
        )
        return ticket_dict(ticket)

    async def resolve_ticket_async(
        self,
        ticket_id: uuid.UUID,
        admin: User,
        action: str,
        background_tasks: BackgroundTasks,
    ):
        if action not in RESOLUTIONS:
            raise ValidationError("Invalid action")

        ticket = await self.db.get(Tickets, ticket_id)
        if not ticket:
            raise NotFound("Ticket not found")
        if ticket.status != TicketStatus.CREATED.value:
            raise InvalidState("Ticket already processed")
        if ticket.user_id == admin.id:
            raise Forbidden("You cannot resolve your own ticket")

        user = ticket.user
        requested_role = ticket.requested_role
        try:
            result = await self.db.execute(
                update(Tickets)
                .where(
                    Tickets.id == ticket.id,
                    Tickets.status == TicketStatus.CREATED.value,
                )
                .values(status=action, approved_by=admin.id, updated_at=now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                raise InvalidState("Ticket already processed")

            if action == TicketStatus.APPROVED.value and not user.has_role(requested_role):
                role = await get_or_create_role(self.db, requested_role)
                user.user_roles.append(UserRoles(role=role))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Resolving ticket {ticket_id} failed: {e}")
            raise UpstreamError("Could not resolve ticket")

        await self.db.refresh(ticket)
        logger.info(f"Ticket {ticket.id} {action} by admin {admin.id}")

        if action == TicketStatus.APPROVED.value:
            background_tasks.add_task(
                self.mailer.send_ticket_approved_email, user.email, requested_role
            )
            await self.cache.on_user_changed(user.id)
        else:
            background_tasks.add_task(
                self.mailer.send_ticket_rejected_email, user.email, requested_role
            )
        return ticket_dict(ticket)

    async def get_open_tickets_async(self, page: int = 1):
        total = await self.db.scalar(
            select(func.count())
            .select_from(Tickets)
            .where(Tickets.status == TicketStatus.CREATED.value)
        ) or 0
        tickets = (
            await self.db.scalars(
                select(Tickets)
                .where(Tickets.status == TicketStatus.CREATED.value)
                .order_by(Tickets.created_at.desc())
                .offset((page - 1) * PAGE_SIZE)
                .limit(PAGE_SIZE)
            )
        ).all()
        return {
            "page": page,
            "limit": PAGE_SIZE,
            "total_tickets": total,
            "total_pages": (total + PAGE_SIZE - 1) // PAGE_SIZE,
            "tickets": [ticket_dict(t) for t in tickets],
        }

    async def get_my_open_ticket_async(self, user: User):
        ticket = await self.db.scalar(
            select(Tickets).where(
                Tickets.user_id == user.id,
                Tickets.status == TicketStatus.CREATED.value,
            )
        )
        return ticket_dict(ticket) if ticket else None
