from typing import Any, Dict, Optional

from skillify.db.models.database import (
    CourseEnrollments,
    Courses,
    Payments,
    Tickets,
    User,
)


def user_brief(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email}


def user_profile(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "avatar": user.avatar,
        "roles": sorted(user.roles),
        "profile_completed": bool(user.profile_completed),
        "is_verified_email": bool(user.is_verified_email),
        "upi_id": user.upi_id,
        "created_at": user.created_at,
    }


def course_dict(course: Courses, with_videos: bool = True) -> Dict[str, Any]:
    data = {
        "id": course.id,
        "title": course.title,
        "description": course.description,
        "instructor": user_brief(course.instructor),
        "thumbnail": {"url": course.thumbnail_url, "public_id": course.thumbnail_public_id},
        "price": course.price,
        "created_at": course.created_at,
        "updated_at": course.updated_at,
    }
    if with_videos:
        data["videos"] = [
            {
                "id": v.id,
                "title": v.title,
                "url": v.url,
                "public_id": v.public_id,
                "position": v.position,
                "uploaded_at": v.uploaded_at,
            }
            for v in course.videos
        ]
    return data


def enrollment_dict(enrollment: CourseEnrollments) -> Dict[str, Any]:
    return {
        "id": enrollment.id,
        "course_id": enrollment.course_id,
        "student_id": enrollment.student_id,
        "enrolled_at": enrollment.enrolled_at,
    }


def payment_dict(payment: Payments) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "course_id": payment.course_id,
        "student_id": payment.student_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "razorpay_order_id": payment.razorpay_order_id,
        "status": payment.status,
    }


def ticket_dict(ticket: Tickets) -> Dict[str, Any]:
    return {
        "id": ticket.id,
        "user": user_brief(ticket.user),
        "current_roles": list(ticket.current_roles or []),
        "requested_role": ticket.requested_role,
        "status": ticket.status,
        "approved_by": ticket.approved_by,
        "created_at": ticket.created_at,
        "updated_at": ticket.updated_at,
    }
