import decimal
import uuid
from typing import List, Optional

from fastapi import Depends
from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.core.enum import MediaKind
from skillify.core.errors import (
    AppError,
    Conflict,
    Forbidden,
    NotFound,
    UpstreamError,
    ValidationError,
)
from skillify.core.settings import settings
from skillify.db.models.database import CourseEnrollments, Courses, CourseVideos, User
from skillify.db.session import get_session
from skillify.schemas.instructor.courses import CreateCourse, MediaFile, UpdateCourse
from skillify.services.shares.cache_policy import CacheKeys, CachePolicy, get_cache_policy
from skillify.services.shares.cloudinary_service import (
    MediaHost,
    discard_assets,
    get_media_host,
)
from skillify.services.shares.presenters import course_dict, user_brief

PAGE_SIZE = 10


def _total_pages(total: int) -> int:
    return (total + PAGE_SIZE - 1) // PAGE_SIZE


class CourseService:
    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        cache: CachePolicy = Depends(get_cache_policy),
        media: MediaHost = Depends(get_media_host),
    ):
        self.db = db
        self.cache = cache
        self.media = media

    # ======================================================
    # HELPERS
    # ======================================================
    async def _get_owned_course(self, course_id: uuid.UUID, instructor: User) -> Courses:
        course = await self.db.get(Courses, course_id)
        if not course:
            raise NotFound("Course not found")
        if course.instructor_id != instructor.id:
            raise Forbidden("Not authorized to modify this course")
        return course

    async def _ensure_title_free(self, title: str, exclude_id: uuid.UUID | None = None):
        stmt = select(Courses.id).where(func.lower(Courses.title) == title.lower())
        if exclude_id:
            stmt = stmt.where(Courses.id != exclude_id)
        if await self.db.scalar(stmt):
            raise Conflict("Course with this title already exists")

    def _resolve_payout_id(self, instructor: User, requested: Optional[str]) -> Optional[str]:
        """A paid course needs a payout id: the one sent now, else the stored one."""
        upi_id = (requested or "").strip() or instructor.upi_id
        if not upi_id:
            raise ValidationError("UPI ID is required for paid courses")
        return upi_id

    @staticmethod
    def _check_media(thumbnail: Optional[MediaFile], videos: List[MediaFile]):
        if thumbnail and not thumbnail.is_image:
            raise ValidationError("Thumbnail must be an image")
        for video in videos:
            if not video.is_video:
                raise ValidationError(f"{video.filename} is not a video")

    async def _upload_videos(
        self, videos: List[MediaFile], uploaded: list, start: int = 0
    ) -> List[CourseVideos]:
        rows = []
        for offset, video in enumerate(videos):
            result = await self.media.upload_video(
                video.content, settings.VIDEO_FOLDER, video.filename
            )
            uploaded.append((result["public_id"], MediaKind.VIDEO))
            rows.append(
                CourseVideos(
                    title=video.title,
                    url=result["url"],
                    public_id=result["public_id"],
                    position=start + offset,
                )
            )
        return rows

    async def _abort(self, uploaded: list, error: Exception, action: str):
        """Roll back the session, drop fresh uploads and translate the error."""
        await self.db.rollback()
        await discard_assets(self.media, uploaded)
        if isinstance(error, IntegrityError):
            raise Conflict("Course with this title already exists")
        if isinstance(error, AppError):
            raise error
        logger.exception(f"Course {action} failed: {error}")
        raise UpstreamError(f"Course {action} failed")

    # ======================================================
    # CREATE
    # ======================================================
    async def create_course_async(
        self,
        instructor: User,
        schema: CreateCourse,
        thumbnail: Optional[MediaFile],
        videos: List[MediaFile],
    ):
        if not thumbnail:
            raise ValidationError("Thumbnail is required")
        if not videos:
            raise ValidationError("At least one video is required")
        self._check_media(thumbnail, videos)
        await self._ensure_title_free(schema.title)

        payout_changed = False
        if schema.price > 0:
            upi_id = self._resolve_payout_id(instructor, schema.upi_id)
            payout_changed = upi_id != instructor.upi_id
            instructor.upi_id = upi_id

        uploaded: list = []
        try:
            thumb = await self.media.upload_image(
                thumbnail.content, settings.THUMBNAIL_FOLDER, thumbnail.filename
            )
            uploaded.append((thumb["public_id"], MediaKind.IMAGE))
            video_rows = await self._upload_videos(videos, uploaded)

            course = Courses(
                title=schema.title,
                description=schema.description,
                price=schema.price,
                instructor=instructor,
                thumbnail_url=thumb["url"],
                thumbnail_public_id=thumb["public_id"],
                videos=video_rows,
            )
            self.db.add(course)
            await self.db.commit()
        except Exception as e:
            await self._abort(uploaded, e, "creation")

        logger.info(f"Course {course.id} created by instructor {instructor.id}")
        await self.cache.on_course_changed(course.id, instructor.id)
        if payout_changed:
            await self.cache.on_user_changed(instructor.id)
        return course_dict(course)

    # ======================================================
    # UPDATE
    # ======================================================
    async def update_course_async(
        self,
        course_id: uuid.UUID,
        instructor: User,
        schema: UpdateCourse,
        thumbnail: Optional[MediaFile] = None,
        videos: Optional[List[MediaFile]] = None,
    ):
        videos = videos or []
        course = await self._get_owned_course(course_id, instructor)
        self._check_media(thumbnail, videos)

        if schema.title and schema.title.lower() != course.title.lower():
            await self._ensure_title_free(schema.title, exclude_id=course.id)

        new_price = schema.price if schema.price is not None else course.price
        payout_changed = False
        if new_price > 0 and (schema.price is not None or schema.upi_id):
            upi_id = self._resolve_payout_id(instructor, schema.upi_id)
            payout_changed = upi_id != instructor.upi_id
            instructor.upi_id = upi_id

        old_thumbnail = course.thumbnail_public_id
        uploaded: list = []
        try:
            if thumbnail:
                thumb = await self.media.upload_image(
                    thumbnail.content, settings.THUMBNAIL_FOLDER, thumbnail.filename
                )
                uploaded.append((thumb["public_id"], MediaKind.IMAGE))
                course.thumbnail_url = thumb["url"]
                course.thumbnail_public_id = thumb["public_id"]

            start = max((v.position for v in course.videos), default=-1) + 1
            course.videos.extend(await self._upload_videos(videos, uploaded, start))

            if schema.title:
                course.title = schema.title
            if schema.description:
                course.description = schema.description
            if schema.price is not None:
                course.price = decimal.Decimal(schema.price)
            await self.db.commit()
        except Exception as e:
            await self._abort(uploaded, e, "update")

        if thumbnail:
            await discard_assets(self.media, [(old_thumbnail, MediaKind.IMAGE)])

        logger.info(f"Course {course.id} updated")
        await self.cache.on_course_changed(course.id, instructor.id)
        if payout_changed:
            await self.cache.on_user_changed(instructor.id)
        return course_dict(course)

    # ======================================================
    # DELETE
    # ======================================================
    async def delete_course_async(self, course_id: uuid.UUID, instructor: User):
        course = await self._get_owned_course(course_id, instructor)
        assets = [(course.thumbnail_public_id, MediaKind.IMAGE)]
        assets += [(v.public_id, MediaKind.VIDEO) for v in course.videos]

        await discard_assets(self.media, assets)
        try:
            await self.db.execute(
                delete(CourseEnrollments).where(CourseEnrollments.course_id == course.id)
            )
            await self.db.delete(course)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Course {course_id} delete failed: {e}")
            raise UpstreamError("Course delete failed")

        logger.info(f"Course {course_id} deleted by instructor {instructor.id}")
        await self.cache.on_course_deleted(course_id, instructor.id)
        return {"message": "Course deleted successfully"}

    async def delete_video_async(
        self, course_id: uuid.UUID, video_id: uuid.UUID, instructor: User
    ):
        course = await self._get_owned_course(course_id, instructor)
        video = next((v for v in course.videos if v.id == video_id), None)
        if not video:
            raise NotFound("Video not found in this course")

        await discard_assets(self.media, [(video.public_id, MediaKind.VIDEO)])
        course.videos.remove(video)
        await self.db.commit()

        await self.cache.on_course_changed(course.id, instructor.id)
        return {"message": "Video deleted successfully"}

    async def replace_video_async(
        self,
        course_id: uuid.UUID,
        video_id: uuid.UUID,
        instructor: User,
        file: MediaFile,
        title: Optional[str] = None,
    ):
        course = await self._get_owned_course(course_id, instructor)
        video = next((v for v in course.videos if v.id == video_id), None)
        if not video:
            raise NotFound("Video not found in this course")
        self._check_media(None, [file])

        old_public_id = video.public_id
        uploaded: list = []
        try:
            result = await self.media.upload_video(
                file.content, settings.VIDEO_FOLDER, file.filename
            )
            uploaded.append((result["public_id"], MediaKind.VIDEO))
            video.url = result["url"]
            video.public_id = result["public_id"]
            video.title = (title or "").strip() or video.title
            await self.db.commit()
        except Exception as e:
            await self._abort(uploaded, e, "video replacement")

        await discard_assets(self.media, [(old_public_id, MediaKind.VIDEO)])
        await self.cache.on_course_changed(course.id, instructor.id)
        return {
            "message": "Video replaced successfully",
            "video": {"id": video.id, "title": video.title, "url": video.url},
        }

    # ======================================================
    # READS
    # ======================================================
    async def _page_of_courses(self, page: int, *filters):
        total = await self.db.scalar(
            select(func.count()).select_from(Courses).where(*filters)
        ) or 0
        courses = (
            await self.db.scalars(
                select(Courses)
                .where(*filters)
                .order_by(Courses.created_at.desc())
                .offset((page - 1) * PAGE_SIZE)
                .limit(PAGE_SIZE)
            )
        ).all()
        return {
            "page": page,
            "limit": PAGE_SIZE,
            "total_courses": total,
            "total_pages": _total_pages(total),
            "courses": [course_dict(c) for c in courses],
        }

    async def get_courses_async(self, page: int = 1):
        return await self.cache.read_through(
            CacheKeys.courses_page(page), lambda: self._page_of_courses(page)
        )

    async def get_instructor_courses_async(self, instructor: User, page: int = 1):
        instructor_id = instructor.id
        return await self.cache.read_through(
            CacheKeys.instructor_courses_page(instructor_id, page),
            lambda: self._page_of_courses(page, Courses.instructor_id == instructor_id),
        )

    async def get_course_detail_async(self, course_id: uuid.UUID, page: int = 1):
        """Course body plus enrollment count and one page of enrolled students."""

        async def load_course():
            course = await self.db.get(Courses, course_id)
            if not course:
                raise NotFound("Course not found")
            return course_dict(course)

        async def load_students():
            total = await self.db.scalar(
                select(func.count())
                .select_from(CourseEnrollments)
                .where(CourseEnrollments.course_id == course_id)
            ) or 0
            rows = (
                await self.db.execute(
                    select(CourseEnrollments, User)
                    .join(User, User.id == CourseEnrollments.student_id)
                    .where(CourseEnrollments.course_id == course_id)
                    .order_by(CourseEnrollments.enrolled_at.desc())
                    .offset((page - 1) * PAGE_SIZE)
                    .limit(PAGE_SIZE)
                )
            ).all()
            return {
                "enrollment_count": total,
                "page": page,
                "total_pages": _total_pages(total),
                "students": [
                    {"student": user_brief(u), "enrolled_at": e.enrolled_at}
                    for e, u in rows
                ],
            }

        course = await self.cache.read_through(CacheKeys.course(course_id), load_course)
        students = await self.cache.read_through(
            CacheKeys.course_page(course_id, page), load_students
        )
        return {**course, **students}
