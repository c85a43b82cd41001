from typing import Optional
import datetime
import decimal
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from skillify.libs.formats.datetime import now


class Base(DeclarativeBase):
    pass


class Role(Base):
    __tablename__ = "role"
    __table_args__ = (UniqueConstraint("role_name", name="role_unique"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    role_name: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now)

    user_roles: Mapped[list["UserRoles"]] = relationship("UserRoles", back_populates="role")


class User(Base):
    __tablename__ = "user"
    __table_args__ = (UniqueConstraint("email", name="user_email_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    password: Mapped[Optional[str]] = mapped_column(String(255))
    google_uid: Mapped[Optional[str]] = mapped_column(String(255))
    avatar: Mapped[Optional[str]] = mapped_column(String(512))
    is_verified_email: Mapped[bool] = mapped_column(Boolean, default=False)
    email_verified_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)
    profile_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    upi_id: Mapped[Optional[str]] = mapped_column(String(120))
    last_login_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now, onupdate=now)

    user_roles: Mapped[list["UserRoles"]] = relationship(
        "UserRoles",
        back_populates="user",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    email_verifications: Mapped[list["EmailVerifications"]] = relationship(
        "EmailVerifications", back_populates="user", cascade="all, delete-orphan"
    )
    password_resets: Mapped[list["PasswordResets"]] = relationship(
        "PasswordResets", back_populates="user", cascade="all, delete-orphan"
    )
    courses: Mapped[list["Courses"]] = relationship("Courses", back_populates="instructor")

    @property
    def roles(self) -> set[str]:
        return {ur.role.role_name for ur in self.user_roles if ur.role}

    def has_role(self, role_name: str) -> bool:
        return role_name in self.roles


class UserRoles(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id", name="user_roles_unique"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("role.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now)

    user: Mapped["User"] = relationship("User", back_populates="user_roles")
    role: Mapped["Role"] = relationship("Role", back_populates="user_roles", lazy="selectin")


class EmailVerifications(Base):
    __tablename__ = "email_verifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expired_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now)

    user: Mapped["User"] = relationship("User", back_populates="email_verifications")


class PasswordResets(Base):
    __tablename__ = "password_resets"
    __table_args__ = (UniqueConstraint("token_hash", name="password_resets_token_key"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expired_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now)

    user: Mapped["User"] = relationship("User", back_populates="password_resets")


class Courses(Base):
    __tablename__ = "courses"
    __table_args__ = (CheckConstraint("price >= 0", name="courses_price_check"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    instructor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user.id"), nullable=False, index=True
    )
    thumbnail_url: Mapped[str] = mapped_column(String(512), nullable=False)
    thumbnail_public_id: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[decimal.Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now, index=True)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now, onupdate=now)

    instructor: Mapped["User"] = relationship("User", back_populates="courses", lazy="selectin")
    videos: Mapped[list["CourseVideos"]] = relationship(
        "CourseVideos",
        back_populates="course",
        lazy="selectin",
        order_by="CourseVideos.position",
        cascade="all, delete-orphan",
    )


# Case-insensitive uniqueness of course titles.
Index("courses_title_lower_key", func.lower(Courses.title), unique=True)


class CourseVideos(Base):
    __tablename__ = "course_videos"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(512), nullable=False)
    public_id: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploaded_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now)

    course: Mapped["Courses"] = relationship("Courses", back_populates="videos")


class CourseEnrollments(Base):
    __tablename__ = "course_enrollments"
    __table_args__ = (
        UniqueConstraint("course_id", "student_id", name="course_enrollments_unique"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    enrolled_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now)


class Payments(Base):
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("razorpay_order_id", name="payments_order_id_key"),
        CheckConstraint(
            "status IN ('created', 'paid', 'failed')", name="payments_status_check"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    razorpay_order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    razorpay_payment_id: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="created")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now, onupdate=now)


class Tickets(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        CheckConstraint(
            "status IN ('created', 'approved', 'rejected')", name="tickets_status_check"
        ),
        # one open ticket per user
        Index(
            "tickets_one_open_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'created'"),
            sqlite_where=text("status = 'created'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("user.id", ondelete="CASCADE"), nullable=False
    )
    current_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    requested_role: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="created")
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("user.id"))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now, index=True)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=now, onupdate=now)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id], lazy="selectin")
