from enum import Enum


class RoleName(str, Enum):
    """Roles are a set per user, not mutually exclusive."""

    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"
    USER = "user"


# Roles a user may ask for through a ticket or pick during onboarding.
SELF_SERVICE_ROLES = {RoleName.STUDENT.value, RoleName.INSTRUCTOR.value}


class PaymentStatus(str, Enum):
    CREATED = "created"
    PAID = "paid"
    FAILED = "failed"


class TicketStatus(str, Enum):
    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"


class MediaKind(str, Enum):
    """Resource type on the media host."""

    IMAGE = "image"
    VIDEO = "video"
