import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from skillify.core.errors import Conflict, InvalidSignature, InvalidState, NotFound, UpstreamError
from skillify.db.models.database import CourseEnrollments, Payments
from skillify.schemas.user.enrollment import VerifyPayment
from skillify.services.shares.cache_policy import CacheKeys, CachePolicy
from skillify.services.user.course_enroll import CourseEnrollService, to_minor_units
from tests.conftest import make_course, make_user


@pytest.fixture
def service(db, cache_policy, gateway):
    return CourseEnrollService(db, cache_policy, gateway)


async def count_enrollments(db, course_id):
    return await db.scalar(
        select(func.count())
        .select_from(CourseEnrollments)
        .where(CourseEnrollments.course_id == course_id)
    )


def verify_body(gateway, order_id, course_id, payment_id="pay_1", signature=None):
    return VerifyPayment(
        razorpay_order_id=order_id,
        razorpay_payment_id=payment_id,
        razorpay_signature=signature or gateway.expected_signature(order_id, payment_id),
        course_id=course_id,
    )


# ======================================================
# FREE
# ======================================================
async def test_free_enroll_twice_conflicts_and_counts_once(service, db, student, instructor):
    course = await make_course(db, instructor)

    enrollment = await service.enroll_free_async(student, course.id)
    assert enrollment["course_id"] == course.id

    with pytest.raises(Conflict) as exc:
        await service.enroll_free_async(student, course.id)
    assert exc.value.message == "Already enrolled in this course"
    assert await count_enrollments(db, course.id) == 1


async def test_free_enroll_rejects_paid_and_missing_course(service, db, student, instructor):
    paid = await make_course(db, instructor, title="Paid", price="499.00")

    with pytest.raises(InvalidState):
        await service.enroll_free_async(student, paid.id)
    with pytest.raises(NotFound):
        await service.enroll_free_async(student, uuid.uuid4())


async def test_free_enroll_invalidates_student_and_course_keys(
    service, db, redis, student, instructor
):
    course = await make_course(db, instructor)
    await redis.set(CacheKeys.student_enrollments(student.id), "[]")
    await redis.set(CacheKeys.enrollment_count(course.id), "{}")

    await service.enroll_free_async(student, course.id)

    assert await redis.exists(
        CacheKeys.student_enrollments(student.id), CacheKeys.enrollment_count(course.id)
    ) == 0
    count = await service.get_enrollment_count_async(course.id)
    assert count["enrollment_count"] == 1


async def test_lost_enroll_race_is_a_conflict(service, db, student, instructor, monkeypatch):
    course = await make_course(db, instructor)
    course_id = course.id
    db.add(CourseEnrollments(course_id=course.id, student_id=student.id))
    await db.commit()

    async def not_yet(sid, cid):
        return False

    monkeypatch.setattr(service, "_is_enrolled", not_yet)

    with pytest.raises(Conflict) as exc:
        await service.enroll_free_async(student, course_id)
    assert exc.value.message == "Already enrolled in this course"
    assert await count_enrollments(db, course_id) == 1


async def test_enrollment_succeeds_while_cache_is_down(db, broken_kv, gateway, student, instructor):
    service = CourseEnrollService(db, CachePolicy(broken_kv), gateway)
    free = await make_course(db, instructor)
    paid = await make_course(db, instructor, title="Paid", price="99.00")

    enrollment = await service.enroll_free_async(student, free.id)
    await service.create_order_async(student, paid.id)
    verified = await service.verify_payment_async(
        student, verify_body(gateway, "order_1", paid.id)
    )

    assert enrollment["course_id"] == free.id
    assert verified["message"] == "Payment verified"
    assert await count_enrollments(db, free.id) == 1
    assert await count_enrollments(db, paid.id) == 1
    count = await service.get_enrollment_count_async(paid.id)
    assert count["enrollment_count"] == 1


# ======================================================
# ORDER
# ======================================================
async def test_create_order_persists_created_payment(service, db, gateway, student, instructor):
    course = await make_course(db, instructor, title="Paid", price="499.99")

    result = await service.create_order_async(student, course.id)

    order = gateway.orders[0]
    assert order["amount"] == 49999
    assert order["currency"] == "INR"
    assert len(order["receipt"]) <= 40
    assert result["key_id"] == gateway.key_id
    payment = await db.scalar(select(Payments))
    assert payment.razorpay_order_id == order["id"]
    assert payment.status == "created"


async def test_create_order_rejects_free_and_already_enrolled(
    service, db, student, instructor
):
    free = await make_course(db, instructor)
    paid = await make_course(db, instructor, title="Paid", price="10.00")
    db.add(CourseEnrollments(course_id=paid.id, student_id=student.id))
    await db.commit()

    with pytest.raises(InvalidState):
        await service.create_order_async(student, free.id)
    with pytest.raises(Conflict):
        await service.create_order_async(student, paid.id)


async def test_gateway_failure_leaves_no_payment(service, db, gateway, student, instructor):
    course = await make_course(db, instructor, title="Paid", price="10.00")
    gateway.fail = True

    with pytest.raises(UpstreamError):
        await service.create_order_async(student, course.id)
    assert await db.scalar(select(func.count()).select_from(Payments)) == 0


def test_minor_units_round_half_up():
    import decimal

    assert to_minor_units(decimal.Decimal("0.01")) == 1
    assert to_minor_units(decimal.Decimal("1999.50")) == 199950


# ======================================================
# VERIFY
# ======================================================
async def test_valid_signature_pays_enrolls_and_invalidates(
    service, db, redis, gateway, student, instructor
):
    course = await make_course(db, instructor, title="Paid", price="99.00")
    await service.create_order_async(student, course.id)
    await redis.set(CacheKeys.student_enrollments(student.id), "[]")
    await redis.set(CacheKeys.enrollment_count(course.id), "{}")

    result = await service.verify_payment_async(
        student, verify_body(gateway, "order_1", course.id)
    )

    assert result["message"] == "Payment verified"
    payment = await db.scalar(select(Payments))
    assert payment.status == "paid"
    assert payment.razorpay_payment_id == "pay_1"
    assert await count_enrollments(db, course.id) == 1
    assert await redis.exists(CacheKeys.student_enrollments(student.id)) == 0
    assert await redis.exists(CacheKeys.enrollment_count(course.id)) == 0


async def test_reverifying_paid_payment_is_a_noop(service, db, gateway, student, instructor):
    course = await make_course(db, instructor, title="Paid", price="99.00")
    await service.create_order_async(student, course.id)
    body = verify_body(gateway, "order_1", course.id)

    await service.verify_payment_async(student, body)
    again = await service.verify_payment_async(student, body)

    assert again == {"message": "Payment already verified"}
    assert await count_enrollments(db, course.id) == 1


async def test_forged_signature_fails_payment_on_every_retry(
    service, db, gateway, student, instructor
):
    course = await make_course(db, instructor, title="Paid", price="99.00")
    await service.create_order_async(student, course.id)
    forged = verify_body(gateway, "order_1", course.id, signature="0" * 64)

    for _ in range(3):
        with pytest.raises(InvalidSignature):
            await service.verify_payment_async(student, forged)

    payment = await db.scalar(select(Payments))
    await db.refresh(payment)
    assert payment.status == "failed"
    assert await count_enrollments(db, course.id) == 0


async def test_unknown_payment_fails_same_order_and_raises(
    service, db, gateway, student, instructor
):
    course = await make_course(db, instructor, title="Paid", price="99.00")
    other = await make_course(db, instructor, title="Other", price="5.00")
    await service.create_order_async(student, course.id)

    with pytest.raises(NotFound):
        await service.verify_payment_async(
            student, verify_body(gateway, "order_1", other.id)
        )

    payment = await db.scalar(select(Payments))
    await db.refresh(payment)
    assert payment.status == "failed"


async def test_verification_with_existing_enrollment_is_success(
    service, db, gateway, student, instructor
):
    course = await make_course(db, instructor, title="Paid", price="99.00")
    await service.create_order_async(student, course.id)
    db.add(CourseEnrollments(course_id=course.id, student_id=student.id))
    await db.commit()

    result = await service.verify_payment_async(
        student, verify_body(gateway, "order_1", course.id)
    )

    assert result == {"message": "Already enrolled"}
    assert await count_enrollments(db, course.id) == 1


async def test_unexpected_error_marks_payment_failed(
    service, db, gateway, student, instructor
):
    course = await make_course(db, instructor, title="Paid", price="99.00")
    await service.create_order_async(student, course.id)

    def explode(*args):
        raise RuntimeError("hmac backend crashed")

    gateway.verify_signature = explode

    with pytest.raises(RuntimeError):
        await service.verify_payment_async(
            student, verify_body(gateway, "order_1", course.id)
        )

    payment = await db.scalar(select(Payments))
    await db.refresh(payment)
    assert payment.status == "failed"


# ======================================================
# UNENROLL / READS
# ======================================================
async def test_unenroll_and_listings(service, db, student, instructor):
    course = await make_course(db, instructor)
    await service.enroll_free_async(student, course.id)

    mine = await service.get_my_enrollments_async(student)
    assert [e["course"]["title"] for e in mine] == ["Intro to Python"]
    page = await service.get_student_courses_async(student, 1)
    assert page["total_courses"] == 1

    await service.unenroll_async(student, course.id)

    assert await service.get_my_enrollments_async(student) == []
    with pytest.raises(NotFound):
        await service.unenroll_async(student, course.id)


async def test_enrollments_are_per_student(service, db, instructor, student):
    other = await make_user(db, "other@skillify.dev", roles=("student",))
    course = await make_course(db, instructor)

    await service.enroll_free_async(student, course.id)
    await service.enroll_free_async(other, course.id)

    assert (await service.get_enrollment_count_async(course.id))["enrollment_count"] == 2


async def test_store_failure_before_enroll_keeps_payment_retryable(
    service, db, gateway, student, instructor, monkeypatch
):
    course = await make_course(db, instructor, title="Paid", price="99.00")
    course_id = course.id
    await service.create_order_async(student, course.id)
    body = verify_body(gateway, "order_1", course.id)
    real_is_enrolled = service._is_enrolled
    dropped = []

    async def drop_once(sid, cid):
        if not dropped:
            dropped.append(cid)
            raise OperationalError("SELECT", {}, Exception("connection dropped"))
        return await real_is_enrolled(sid, cid)

    monkeypatch.setattr(service, "_is_enrolled", drop_once)

    with pytest.raises(OperationalError):
        await service.verify_payment_async(student, body)

    payment = await db.scalar(select(Payments))
    await db.refresh(payment)
    assert payment.status != "paid"
    assert await count_enrollments(db, course_id) == 0

    await db.refresh(student)
    retried = await service.verify_payment_async(student, body)

    assert retried["message"] == "Payment verified"
    await db.refresh(payment)
    assert payment.status == "paid"
    assert await count_enrollments(db, course_id) == 1


async def test_paid_payment_without_enrollment_is_restored(
    service, db, gateway, student, instructor
):
    course = await make_course(db, instructor, title="Paid", price="99.00")
    db.add(
        Payments(
            student_id=student.id,
            course_id=course.id,
            amount=course.price,
            razorpay_order_id="order_lost",
            razorpay_payment_id="pay_lost",
            status="paid",
        )
    )
    await db.commit()

    result = await service.verify_payment_async(
        student, verify_body(gateway, "order_lost", course.id, payment_id="pay_lost")
    )
    again = await service.verify_payment_async(
        student, verify_body(gateway, "order_lost", course.id, payment_id="pay_lost")
    )

    assert result["message"] == "Payment verified"
    assert again == {"message": "Payment already verified"}
    assert await count_enrollments(db, course.id) == 1
