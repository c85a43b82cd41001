from fastapi import APIRouter, BackgroundTasks, Body, Depends, Request, Response, status

from skillify.core.deps import AuthorizationService
from skillify.core.enum import RoleName
from skillify.core.rate_limit import RateLimiter
from skillify.libs.response import success
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
from skillify.services.shares.auth import AuthService

router = APIRouter(prefix="/auth", tags=["Auth"])


def get_auth_service(auth: AuthService = Depends(AuthService)) -> AuthService:
    return auth


def get_authorization_service(
    authorization_service: AuthorizationService = Depends(AuthorizationService),
) -> AuthorizationService:
    return authorization_service


@router.post(
    "/register-init",
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(RateLimiter("register"))],
)
async def register_init(
    background_tasks: BackgroundTasks,
    schema: RegisterInit = Body(),
    auth_service: AuthService = Depends(get_auth_service),
):
    return success(await auth_service.register_init_async(schema, background_tasks))


@router.post(
    "/register-verify",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(RateLimiter("verify"))],
)
async def register_verify(
    res: Response,
    schema: RegisterVerify = Body(),
    auth_service: AuthService = Depends(get_auth_service),
):
    return success(await auth_service.register_verify_async(schema, res))


@router.post("/login", dependencies=[Depends(RateLimiter("login"))])
async def login(
    res: Response,
    schema: LoginUser = Body(),
    auth_service: AuthService = Depends(get_auth_service),
):
    return success(await auth_service.login_async(schema, res))


@router.post("/google")
async def login_google(
    res: Response,
    schema: GoogleLogin = Body(),
    auth_service: AuthService = Depends(get_auth_service),
):
    return success(await auth_service.login_google_async(schema, res))


@router.post("/refresh")
async def refresh(
    request: Request,
    res: Response,
    auth_service: AuthService = Depends(get_auth_service),
):
    return success(await auth_service.refresh_async(request, res))


@router.post("/logout")
async def logout(
    res: Response,
    auth_service: AuthService = Depends(get_auth_service),
):
    return success(await auth_service.logout_async(res))


@router.get("/me")
async def me(
    auth_service: AuthService = Depends(get_auth_service),
    authorization: AuthorizationService = Depends(get_authorization_service),
):
    user = await authorization.get_current_user()
    return success(await auth_service.profile_async(user))


@router.post("/select-role")
async def select_role(
    res: Response,
    schema: SelectRole = Body(),
    auth_service: AuthService = Depends(get_auth_service),
    authorization: AuthorizationService = Depends(get_authorization_service),
):
    user = await authorization.get_current_user()
    return success(await auth_service.select_role_async(user, schema, res))


@router.patch("/change-role")
async def change_role(
    schema: ChangeRole = Body(),
    auth_service: AuthService = Depends(get_auth_service),
    authorization: AuthorizationService = Depends(get_authorization_service),
):
    admin = await authorization.require_role([RoleName.ADMIN.value])
    return success(await auth_service.change_role_async(admin, schema))


@router.post("/forgot-password", dependencies=[Depends(RateLimiter("forgot-password"))])
async def forgot_password(
    background_tasks: BackgroundTasks,
    schema: ForgotPassword = Body(),
    auth_service: AuthService = Depends(get_auth_service),
):
    return success(await auth_service.forgot_password_async(schema, background_tasks))


@router.post("/reset-password/{token}")
async def reset_password(
    token: str,
    schema: ResetPassword = Body(),
    auth_service: AuthService = Depends(get_auth_service),
):
    return success(await auth_service.reset_password_async(token, schema))
