from fastapi import APIRouter, BackgroundTasks, Body, Depends, Response

from skillify.core.deps import AuthorizationService
from skillify.core.enum import RoleName
from skillify.libs.response import success
from skillify.schemas.admin.invite import AcceptInvite, AdminInvite
from skillify.services.admin.admin import AdminService

router = APIRouter(prefix="/admin", tags=["Admin"])


def get_admin_service(service: AdminService = Depends(AdminService)) -> AdminService:
    return service


@router.post("/invite")
async def invite_admin(
    background_tasks: BackgroundTasks,
    schema: AdminInvite = Body(),
    service: AdminService = Depends(get_admin_service),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    admin = await authorization.require_role([RoleName.ADMIN.value])
    return success(await service.invite_admin_async(admin, schema, background_tasks))


@router.post("/accept-invite")
async def accept_invite(
    res: Response,
    schema: AcceptInvite = Body(),
    service: AdminService = Depends(get_admin_service),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    user = await authorization.get_current_user()
    return success(await service.accept_invite_async(user, schema, res))


@router.get("/roles/count")
async def get_roles_count(
    service: AdminService = Depends(get_admin_service),
    authorization: AuthorizationService = Depends(AuthorizationService),
):
    await authorization.require_role([RoleName.ADMIN.value])
    return success(await service.get_roles_count_async())
