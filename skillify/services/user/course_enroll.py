import decimal
import time
import uuid

from fastapi import Depends
from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from skillify.core.enum import PaymentStatus
from skillify.core.errors import (
    AppError,
    Conflict,
    InvalidSignature,
    InvalidState,
    NotFound,
    UpstreamError,
)
from skillify.core.settings import settings
from skillify.db.models.database import CourseEnrollments, Courses, Payments, User
from skillify.db.session import get_session
from skillify.schemas.user.enrollment import VerifyPayment
from skillify.services.shares.cache_policy import CacheKeys, CachePolicy, get_cache_policy
from skillify.services.shares.presenters import course_dict, enrollment_dict, payment_dict
from skillify.services.shares.razorpay_service import PaymentGateway, get_payment_gateway

PAGE_SIZE = 10


def to_minor_units(amount: decimal.Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=decimal.ROUND_HALF_UP))


class CourseEnrollService:
    """
    Enrollment workflow per (student, course):
    - free:  none → enrolled
    - paid:  none → order created → paid + enrolled | failed
    The (course, student) unique constraint is the only concurrency guard;
    verification can be retried any number of times.
    """

    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        cache: CachePolicy = Depends(get_cache_policy),
        gateway: PaymentGateway = Depends(get_payment_gateway),
    ):
        self.db = db
        self.cache = cache
        self.gateway = gateway

    # ======================================================
    # HELPERS
    # ======================================================
    async def _get_course(self, course_id: uuid.UUID) -> Courses:
        course = await self.db.get(Courses, course_id)
        if not course:
            raise NotFound("Course not found")
        return course

    async def _is_enrolled(self, student_id: uuid.UUID, course_id: uuid.UUID) -> bool:
        found = await self.db.scalar(
            select(CourseEnrollments.id).where(
                CourseEnrollments.course_id == course_id,
                CourseEnrollments.student_id == student_id,
            )
        )
        return found is not None

    async def _fail_created_payment(self, order_id: str, student_id: uuid.UUID) -> None:
        """Leave an auditable failed row; never raises."""
        try:
            await self.db.execute(
                update(Payments)
                .where(
                    Payments.razorpay_order_id == order_id,
                    Payments.student_id == student_id,
                    Payments.status == PaymentStatus.CREATED.value,
                )
                .values(status=PaymentStatus.FAILED.value)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Could not mark order {order_id} as failed: {e}")

    # ======================================================
    # FREE ENROLLMENT
    # ======================================================
    async def enroll_free_async(self, student: User, course_id: uuid.UUID):
        student_id = student.id
        try:
            course = await self._get_course(course_id)
            if course.price != 0:
                raise InvalidState("Paid course. Complete the payment to enroll")
            if await self._is_enrolled(student_id, course.id):
                raise Conflict("Already enrolled in this course")

            enrollment = CourseEnrollments(course_id=course.id, student_id=student_id)
            self.db.add(enrollment)
            await self.db.commit()
        except IntegrityError:
            # lost the race against a concurrent enroll of the same pair
            await self.db.rollback()
            raise Conflict("Already enrolled in this course")
        except AppError:
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Free enrollment failed: {e}")
            raise UpstreamError("Enrollment failed")

        logger.info(f"Student {student_id} enrolled in free course {course_id}")
        await self.cache.on_enrollment_changed(student_id, course_id)
        return {
            **enrollment_dict(enrollment),
            "course": course_dict(course, with_videos=False),
        }

    # ======================================================
    # PAID ENROLLMENT: STEP 1, ORDER
    # ======================================================
    async def create_order_async(self, student: User, course_id: uuid.UUID):
        student_id = student.id
        course = await self._get_course(course_id)
        if course.price == 0:
            raise InvalidState("Free course. No payment required!")
        if await self._is_enrolled(student_id, course.id):
            raise Conflict("Already enrolled in this course")

        currency = settings.RAZORPAY_CURRENCY
        # receipt is capped at 40 chars by the gateway: 24 + 1 + 13
        receipt = f"{course.id.hex[:24]}_{int(time.time() * 1000)}"
        order = await self.gateway.create_order(
            amount_minor=to_minor_units(course.price), currency=currency, receipt=receipt
        )

        payment = Payments(
            student_id=student_id,
            course_id=course.id,
            amount=course.price,
            currency=currency,
            razorpay_order_id=order["id"],
            status=PaymentStatus.CREATED.value,
        )
        self.db.add(payment)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("Payment order already registered")

        logger.info(f"Order {order['id']} created for student {student_id}, course {course_id}")
        return {"order": order, "key_id": self.gateway.key_id, "payment": payment_dict(payment)}

    # ======================================================
    # PAID ENROLLMENT: STEP 2, VERIFY + ENROLL
    # ======================================================
    async def verify_payment_async(self, student: User, schema: VerifyPayment):
        student_id = student.id
        try:
            return await self._verify_and_enroll(student_id, schema)
        except AppError:
            raise
        except Exception as e:
            await self.db.rollback()
            await self._fail_created_payment(schema.razorpay_order_id, student_id)
            logger.exception(f"Payment verification crashed for {schema.razorpay_order_id}: {e}")
            raise

    async def _verify_and_enroll(self, student_id: uuid.UUID, schema: VerifyPayment):
        order_id = schema.razorpay_order_id
        course_id = schema.course_id

        payment = await self.db.scalar(
            select(Payments).where(
                Payments.razorpay_order_id == order_id,
                Payments.student_id == student_id,
                Payments.course_id == course_id,
            )
        )
        if not payment:
            await self._fail_created_payment(order_id, student_id)
            raise NotFound("Payment record not found")

        if payment.status == PaymentStatus.PAID.value:
            if await self._is_enrolled(student_id, course_id):
                return {"message": "Payment already verified"}
            logger.warning(f"Order {order_id} is paid without an enrollment, restoring it")
            return await self._enroll_paid(payment, student_id, course_id)

        if not self.gateway.verify_signature(
            order_id, schema.razorpay_payment_id, schema.razorpay_signature
        ):
            payment.status = PaymentStatus.FAILED.value
            await self.db.commit()
            logger.warning(f"Invalid signature for order {order_id} (student {student_id})")
            raise InvalidSignature("Invalid payment signature")

        payment.status = PaymentStatus.PAID.value
        payment.razorpay_payment_id = schema.razorpay_payment_id
        return await self._enroll_paid(payment, student_id, course_id)

    async def _enroll_paid(self, payment: Payments, student_id: uuid.UUID, course_id: uuid.UUID):
        """Commits the paid status and the enrollment in one transaction."""
        payment_pk = payment.id
        order_id = payment.razorpay_order_id
        payment_id = payment.razorpay_payment_id

        if await self._is_enrolled(student_id, course_id):
            await self.db.commit()
            return {"message": "Already enrolled"}

        enrollment = CourseEnrollments(course_id=course_id, student_id=student_id)
        self.db.add(enrollment)
        try:
            await self.db.commit()
        except IntegrityError:
            # a concurrent verification enrolled first
            await self.db.rollback()
            await self.db.execute(
                update(Payments)
                .where(Payments.id == payment_pk)
                .values(status=PaymentStatus.PAID.value, razorpay_payment_id=payment_id)
            )
            await self.db.commit()
            return {"message": "Already enrolled"}

        logger.info(f"Order {order_id} paid, student {student_id} enrolled in {course_id}")
        await self.cache.on_enrollment_changed(student_id, course_id)
        return {"message": "Payment verified", "enrollment": enrollment_dict(enrollment)}

    # ======================================================
    # UNENROLL
    # ======================================================
    async def unenroll_async(self, student: User, course_id: uuid.UUID):
        student_id = student.id
        enrollment = await self.db.scalar(
            select(CourseEnrollments).where(
                CourseEnrollments.course_id == course_id,
                CourseEnrollments.student_id == student_id,
            )
        )
        if not enrollment:
            raise NotFound("You are not enrolled in this course")

        await self.db.delete(enrollment)
        await self.db.commit()

        await self.cache.on_enrollment_changed(student_id, course_id)
        return {
            "message": "Successfully unenrolled from the course",
            "course_id": course_id,
        }

    # ======================================================
    # READS
    # ======================================================
    async def get_my_enrollments_async(self, student: User):
        student_id = student.id

        async def load():
            rows = (
                await self.db.execute(
                    select(CourseEnrollments, Courses)
                    .join(Courses, Courses.id == CourseEnrollments.course_id)
                    .where(CourseEnrollments.student_id == student_id)
                    .order_by(CourseEnrollments.enrolled_at.desc())
                )
            ).all()
            return [
                {**enrollment_dict(e), "course": course_dict(c, with_videos=False)}
                for e, c in rows
            ]

        return await self.cache.read_through(CacheKeys.student_enrollments(student_id), load)

    async def get_enrollment_count_async(self, course_id: uuid.UUID):
        async def load():
            count = await self.db.scalar(
                select(func.count())
                .select_from(CourseEnrollments)
                .where(CourseEnrollments.course_id == course_id)
            )
            return {"course_id": course_id, "enrollment_count": count or 0}

        return await self.cache.read_through(CacheKeys.enrollment_count(course_id), load)

    async def get_student_courses_async(self, student: User, page: int = 1):
        student_id = student.id

        async def load():
            total = await self.db.scalar(
                select(func.count())
                .select_from(CourseEnrollments)
                .join(Courses, Courses.id == CourseEnrollments.course_id)
                .where(CourseEnrollments.student_id == student_id)
            ) or 0
            courses = (
                await self.db.scalars(
                    select(Courses)
                    .join(CourseEnrollments, CourseEnrollments.course_id == Courses.id)
                    .where(CourseEnrollments.student_id == student_id)
                    .order_by(CourseEnrollments.enrolled_at.desc())
                    .offset((page - 1) * PAGE_SIZE)
                    .limit(PAGE_SIZE)
                )
            ).all()
            return {
                "page": page,
                "limit": PAGE_SIZE,
                "total_courses": total,
                "total_pages": (total + PAGE_SIZE - 1) // PAGE_SIZE,
                "courses": [course_dict(c) for c in courses],
            }

        return await self.cache.read_through(
            CacheKeys.student_courses_page(student_id, page), load
        )
