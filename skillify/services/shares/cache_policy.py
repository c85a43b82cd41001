import json
import uuid
from typing import Any, Awaitable, Callable, Iterable

from fastapi import Depends
from fastapi.encoders import jsonable_encoder
from loguru import logger

from skillify.core.cache import KeyValueCache, get_cache
from skillify.core.errors import UpstreamError
from skillify.core.settings import settings

Id = uuid.UUID | str


class CacheKeys:
    """Key families shared by every read-through and invalidation."""

    @staticmethod
    def courses_page(page: int) -> str:
        return f"courses:page:{page}"

    @staticmethod
    def instructor_courses_page(instructor_id: Id, page: int) -> str:
        return f"courses:instructor:{instructor_id}:page:{page}"

    @staticmethod
    def student_courses_page(student_id: Id, page: int) -> str:
        return f"courses:student:{student_id}:page:{page}"

    @staticmethod
    def course(course_id: Id) -> str:
        return f"course:{course_id}"

    @staticmethod
    def course_page(course_id: Id, page: int) -> str:
        return f"course:{course_id}:page:{page}"

    @staticmethod
    def user_profile(user_id: Id) -> str:
        return f"user:profile:{user_id}"

    @staticmethod
    def student_enrollments(student_id: Id) -> str:
        return f"enrollments:student:{student_id}"

    @staticmethod
    def enrollment_count(course_id: Id) -> str:
        return f"enrollment:count:{course_id}"


class CachePolicy:
    """
    Read-through caching + keyed invalidation.
    - read_through: hit → cached JSON; miss → loader(), stored with a TTL
    - on_*: called as the last step of a mutation, best effort
    The cache is never authoritative: any cache failure degrades to a miss
    on reads and to a logged skip on invalidation.
    """

    def __init__(self, cache: KeyValueCache, ttl_seconds: int | None = None):
        self.cache = cache
        self.ttl_seconds = ttl_seconds or settings.CACHE_TTL_SECONDS

    # =========================================================
    # READ-THROUGH
    # =========================================================
    async def read_through(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl_seconds: int | None = None,
    ) -> Any:
        try:
            cached = await self.cache.get(key)
        except UpstreamError as e:
            logger.warning(f"Cache read skipped for {key}: {e.message}")
            return jsonable_encoder(await loader())

        if cached is not None:
            return json.loads(cached)

        value = jsonable_encoder(await loader())
        try:
            await self.cache.set(key, json.dumps(value), ttl_seconds or self.ttl_seconds)
        except UpstreamError as e:
            logger.warning(f"Cache populate skipped for {key}: {e.message}")
        return value

    # =========================================================
    # INVALIDATION
    # =========================================================
    async def invalidate(
        self, keys: Iterable[str] = (), patterns: Iterable[str] = ()
    ) -> None:
        """Delete exact keys and every key matching the patterns. Never raises."""
        targets = set(keys)
        try:
            for pattern in patterns:
                targets.update(await self.cache.keys_matching(pattern))
            if targets:
                await self.cache.delete(*sorted(targets))
        except UpstreamError as e:
            logger.warning(f"Cache invalidation skipped: {e.message}")
        except Exception as e:
            logger.exception(f"Unexpected cache invalidation error: {e}")

    async def on_course_changed(self, course_id: Id | None, instructor_id: Id) -> None:
        """Create/update/video change. Public pages are always dropped."""
        keys, patterns = [], ["courses:page:*", f"courses:instructor:{instructor_id}:page:*"]
        if course_id:
            keys.append(CacheKeys.course(course_id))
            patterns.append(f"course:{course_id}:page:*")
        await self.invalidate(keys, patterns)

    async def on_course_deleted(self, course_id: Id, instructor_id: Id) -> None:
        # enrolled students' listings would keep pointing at the course
        await self.invalidate(
            keys=[CacheKeys.course(course_id), CacheKeys.enrollment_count(course_id)],
            patterns=[
                "courses:page:*",
                f"courses:instructor:{instructor_id}:page:*",
                f"course:{course_id}:page:*",
                "courses:student:*",
            ],
        )

    async def on_enrollment_changed(self, student_id: Id, course_id: Id) -> None:
        await self.invalidate(
            keys=[
                CacheKeys.student_enrollments(student_id),
                CacheKeys.enrollment_count(course_id),
                CacheKeys.course(course_id),
            ],
            patterns=[
                f"courses:student:{student_id}:page:*",
                f"course:{course_id}:page:*",
            ],
        )

    async def on_user_changed(self, user_id: Id) -> None:
        await self.invalidate(keys=[CacheKeys.user_profile(user_id)])


def get_cache_policy(cache: KeyValueCache = Depends(get_cache)) -> CachePolicy:
    return CachePolicy(cache)
