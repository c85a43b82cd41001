import uuid

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, status

from skillify.core.deps import AuthorizationService
from skillify.core.enum import RoleName
from skillify.libs.response import success
from skillify.schemas.shares.ticket import CreateTicket, ResolveTicket
from skillify.services.shares.ticket import TicketService

router = APIRouter(prefix="/ticket", tags=["Ticket"])

ADMIN = [RoleName.ADMIN.value]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_ticket(
    background_tasks: BackgroundTasks,
    schema: CreateTicket = Body(),
    service: TicketService = Depends(TicketService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    user = await authorization.get_current_user()
    return success(await service.create_ticket_async(user, schema, background_tasks))


@router.get("/me")
async def get_my_open_ticket(
    service: TicketService = Depends(TicketService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    user = await authorization.get_current_user()
    return success({"ticket": await service.get_my_open_ticket_async(user)})


@router.get("")
async def get_open_tickets(
    page: int = Query(1, ge=1),
    service: TicketService = Depends(TicketService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    await authorization.require_role(ADMIN)
    return success(await service.get_open_tickets_async(page))


@router.patch("/{ticket_id}")
async def resolve_ticket(
    ticket_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    schema: ResolveTicket = Body(),
    service: TicketService = Depends(TicketService),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    admin = await authorization.require_role(ADMIN)
    return success(
        await service.resolve_ticket_async(ticket_id, admin, schema.action, background_tasks)
    )
