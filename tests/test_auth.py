import pytest
from fastapi import BackgroundTasks, Response

from skillify.core.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    Unauthorized,
    ValidationError,
)
from skillify.core.security import SecurityService
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
from skillify.services.shares import auth as auth_module
from skillify.services.shares.auth import FORGOT_PASSWORD_MESSAGE, AuthService
from skillify.services.shares.cache_policy import CacheKeys
from tests.conftest import make_user

PASSWORD = "Str0ng!pass"


@pytest.fixture
def security():
    return SecurityService()


@pytest.fixture
def service(db, security, mailer, cache_policy):
    return AuthService(db, security, mailer, cache_policy)


async def register(service, email="new@skillify.dev"):
    tasks = BackgroundTasks()
    await service.register_init_async(
        RegisterInit(name="New User", email=email, password=PASSWORD), tasks
    )
    # (email, name, code)
    return tasks.tasks[0].args[2]


def test_weak_passwords_are_rejected():
    with pytest.raises(ValueError):
        RegisterInit(name="A", email="a@skillify.dev", password="alllowercase1!")


async def test_register_then_verify_grants_user_role(service, security):
    code = await register(service)
    wrong = "000000" if code != "000000" else "111111"
    res = Response()

    with pytest.raises(ValidationError):
        await service.register_verify_async(
            RegisterVerify(email="new@skillify.dev", otp=wrong), res
        )

    payload = await service.register_verify_async(
        RegisterVerify(email="New@Skillify.dev", otp=code), res
    )

    assert payload["user"]["roles"] == ["user"]
    assert payload["user"]["is_verified_email"] is True
    claims = await security.decode_access_token(payload["access_token"])
    assert claims["roles"] == ["user"]
    cookies = res.headers.getlist("set-cookie")
    assert any(c.startswith("refresh_token=") for c in cookies)


async def test_register_again_issues_a_new_code_only_until_verified(service):
    first = await register(service)
    second = await register(service)

    if first != second:
        with pytest.raises(ValidationError):
            await service.register_verify_async(
                RegisterVerify(email="new@skillify.dev", otp=first), Response()
            )
    await service.register_verify_async(
        RegisterVerify(email="new@skillify.dev", otp=second), Response()
    )

    with pytest.raises(Conflict):
        await register(service)


async def test_login_outcomes(service, db, security):
    hashed = await security.hash_password(PASSWORD)
    await make_user(db, "ok@skillify.dev", password=hashed)
    await make_user(db, "pending@skillify.dev", password=hashed, verified=False)

    with pytest.raises(NotFound):
        await service.login_async(LoginUser(email="ghost@skillify.dev", password=PASSWORD), Response())
    with pytest.raises(Unauthorized):
        await service.login_async(LoginUser(email="ok@skillify.dev", password="nope"), Response())
    with pytest.raises(Forbidden):
        await service.login_async(LoginUser(email="pending@skillify.dev", password=PASSWORD), Response())

    payload = await service.login_async(LoginUser(email="ok@skillify.dev", password=PASSWORD), Response())
    assert payload["user"]["email"] == "ok@skillify.dev"


async def test_forgot_password_is_enumeration_safe(service, db, security):
    await make_user(db, "known@skillify.dev", password=await security.hash_password(PASSWORD))

    unknown_tasks, known_tasks = BackgroundTasks(), BackgroundTasks()
    unknown = await service.forgot_password_async(
        ForgotPassword(email="ghost@skillify.dev"), unknown_tasks
    )
    known = await service.forgot_password_async(
        ForgotPassword(email="known@skillify.dev"), known_tasks
    )

    assert unknown == known == {"message": FORGOT_PASSWORD_MESSAGE}
    assert unknown_tasks.tasks == []
    assert len(known_tasks.tasks) == 1


async def test_reset_token_works_once(service, db, security):
    await make_user(db, "known@skillify.dev", password=await security.hash_password(PASSWORD))
    tasks = BackgroundTasks()
    await service.forgot_password_async(ForgotPassword(email="known@skillify.dev"), tasks)
    token = tasks.tasks[0].args[2].rsplit("/", 1)[-1]

    await service.reset_password_async(token, ResetPassword(password="N3w!password"))
    with pytest.raises(ValidationError):
        await service.reset_password_async(token, ResetPassword(password="N3w!password"))

    payload = await service.login_async(
        LoginUser(email="known@skillify.dev", password="N3w!password"), Response()
    )
    assert payload["user"]["email"] == "known@skillify.dev"


async def test_select_role_is_one_time(service, db, redis):
    user = await make_user(db, "fresh@skillify.dev")
    await redis.set(CacheKeys.user_profile(user.id), "{}")

    payload = await service.select_role_async(user, SelectRole(role="instructor"), Response())

    assert payload["user"]["roles"] == ["instructor", "user"]
    assert payload["user"]["profile_completed"] is True
    assert not await redis.exists(CacheKeys.user_profile(user.id))
    with pytest.raises(InvalidState):
        await service.select_role_async(user, SelectRole(role="student"), Response())


async def test_admin_changes_roles(service, db, admin):
    user = await make_user(db, "member@skillify.dev", roles=("user", "student"))

    added = await service.change_role_async(
        admin, ChangeRole(user_id=user.id, role="instructor", action="add")
    )
    assert added["roles"] == ["instructor", "student", "user"]

    removed = await service.change_role_async(
        admin, ChangeRole(user_id=user.id, role="student", action="remove")
    )
    assert removed["roles"] == ["instructor", "user"]

    with pytest.raises(Forbidden):
        await service.change_role_async(
            admin, ChangeRole(user_id=admin.id, role="admin", action="remove")
        )


async def test_profile_is_cached(service, db, redis, student):
    profile = await service.profile_async(student)

    assert profile["email"] == "student@skillify.dev"
    assert await redis.exists(CacheKeys.user_profile(student.id))


async def test_token_types_are_not_interchangeable(security):
    access = await security.create_access_token("abc", ["student"])
    refresh = await security.create_refresh_token("abc")

    with pytest.raises(ValueError):
        await security.decode_refresh_token(access)
    with pytest.raises(ValueError):
        await security.decode_access_token(refresh)
    assert (await security.decode_access_token(access))["sub"] == "abc"


def google_claims(monkeypatch, **claims):
    claims = {"sub": "google-123", "name": "Pending", **claims}
    monkeypatch.setattr(
        auth_module.id_token, "verify_oauth2_token", lambda *args, **kwargs: claims
    )


async def test_google_sign_in_requires_a_verified_email(service, db, monkeypatch):
    user = await make_user(db, "pending@skillify.dev", verified=False, roles=())
    google_claims(monkeypatch, email="pending@skillify.dev", email_verified=False)

    with pytest.raises(Unauthorized):
        await service.login_google_async(GoogleLogin(credential="token"), Response())

    await db.refresh(user)
    assert user.is_verified_email is False
    assert user.google_uid is None


async def test_google_sign_in_links_a_verified_email(service, db, monkeypatch):
    await make_user(db, "pending@skillify.dev", verified=False, roles=())
    google_claims(monkeypatch, email="Pending@skillify.dev", email_verified=True)

    payload = await service.login_google_async(GoogleLogin(credential="token"), Response())

    assert payload["user"]["email"] == "pending@skillify.dev"
    assert payload["user"]["is_verified_email"] is True
    assert payload["user"]["roles"] == ["user"]
