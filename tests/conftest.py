import decimal
import itertools

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from skillify.core.cache import KeyValueCache
from skillify.core.enum import MediaKind
from skillify.db.models.database import Base, Courses, CourseVideos, User, UserRoles
from skillify.db.models.init_db import get_or_create_role
from skillify.services.shares.cache_policy import CachePolicy
from skillify.services.shares.cloudinary_service import MediaHostError
from skillify.services.shares.razorpay_service import RazorpayError, sign_payment

GATEWAY_SECRET = "rzp_test_secret"


# ================================
# FAKE COLLABORATORS
# ================================
class FakeGateway:
    key_id = "rzp_test_key"

    def __init__(self):
        self.orders = []
        self.fail = False
        self._ids = itertools.count(1)

    async def create_order(self, *, amount_minor, currency, receipt):
        if self.fail:
            raise RazorpayError("Payment gateway timed out")
        order = {
            "id": f"order_{next(self._ids)}",
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
        }
        self.orders.append(order)
        return order

    def expected_signature(self, order_id, payment_id):
        return sign_payment(GATEWAY_SECRET, order_id, payment_id)

    def verify_signature(self, order_id, payment_id, signature):
        return self.expected_signature(order_id, payment_id) == signature


class FakeMediaHost:
    def __init__(self):
        self.uploaded = []
        self.deleted = []
        self.fail_video_after = None
        self.fail_delete = False
        self._ids = itertools.count(1)

    async def _upload(self, kind, folder):
        public_id = f"{folder}/{kind.value}_{next(self._ids)}"
        self.uploaded.append((public_id, kind))
        return {"url": f"https://media.test/{public_id}", "public_id": public_id}

    async def upload_image(self, content, folder, filename=""):
        return await self._upload(MediaKind.IMAGE, folder)

    async def upload_video(self, content, folder, filename=""):
        videos = [u for u in self.uploaded if u[1] == MediaKind.VIDEO]
        if self.fail_video_after is not None and len(videos) >= self.fail_video_after:
            raise MediaHostError("Media upload failed: 502")
        return await self._upload(MediaKind.VIDEO, folder)

    async def delete(self, public_id, kind):
        if self.fail_delete:
            raise MediaHostError(f"Media delete failed for {public_id}")
        self.deleted.append((public_id, kind))


class FakeMailer:
    def __init__(self):
        self.sent = []

    async def _record(self, kind, *args):
        self.sent.append((kind, args))
        return True

    async def send_verification_email(self, email, name, code):
        return await self._record("verify", email, name, code)

    async def send_reset_password_email(self, email, name, reset_link):
        return await self._record("reset", email, name, reset_link)

    async def send_admin_invite_email(self, email, invite_link):
        return await self._record("invite", email, invite_link)

    async def send_ticket_created_email(self, email, ticket_id, requested_role):
        return await self._record("ticket_created", email, ticket_id, requested_role)

    async def send_ticket_approved_email(self, email, requested_role):
        return await self._record("ticket_approved", email, requested_role)

    async def send_ticket_rejected_email(self, email, requested_role):
        return await self._record("ticket_rejected", email, requested_role)


class BrokenRedis:
    """Every call fails like an unreachable server."""

    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise RedisConnectionError("Connection refused")

        return fail

    def scan_iter(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")

    def pipeline(self, *args, **kwargs):
        return BrokenPipeline()


class BrokenPipeline:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    async def execute(self):
        raise RedisConnectionError("Connection refused")


# ================================
# FIXTURES
# ================================
@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def kv(redis):
    return KeyValueCache(redis)


@pytest.fixture
def broken_kv():
    return KeyValueCache(BrokenRedis())


@pytest.fixture
def cache_policy(kv):
    return CachePolicy(kv)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def media():
    return FakeMediaHost()


@pytest.fixture
def mailer():
    return FakeMailer()


# ================================
# DATA BUILDERS
# ================================
async def make_user(db, email, roles=("user",), verified=True, password=None, **extra):
    user = User(
        name=email.split("@")[0].title(),
        email=email,
        password=password,
        is_verified_email=verified,
        user_roles=[],
        **extra,
    )
    for role_name in roles:
        role = await get_or_create_role(db, role_name)
        user.user_roles.append(UserRoles(role=role))
    db.add(user)
    await db.commit()
    return user


async def make_course(db, instructor, title="Intro to Python", price="0.00", videos=1):
    course = Courses(
        title=title,
        description=f"{title} description",
        instructor=instructor,
        thumbnail_url="https://media.test/thumb.png",
        thumbnail_public_id=f"thumbs/{title}",
        price=decimal.Decimal(price),
        videos=[
            CourseVideos(
                title=f"Lesson {i}",
                url=f"https://media.test/v{i}.mp4",
                public_id=f"videos/{title}/{i}",
                position=i,
            )
            for i in range(videos)
        ],
    )
    db.add(course)
    await db.commit()
    return course


@pytest.fixture
async def student(db):
    return await make_user(db, "student@skillify.dev", roles=("user", "student"))


@pytest.fixture
async def instructor(db):
    return await make_user(db, "mentor@skillify.dev", roles=("user", "instructor"))


@pytest.fixture
async def admin(db):
    return await make_user(db, "admin@skillify.dev", roles=("user", "admin"))
