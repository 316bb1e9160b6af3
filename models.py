# models.py
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin

db = SQLAlchemy()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@contextmanager
def transaction():
    """Commit everything written inside the block, or nothing at all."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


# -------- Closed value sets --------
class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"


class FeeType(str, Enum):
    NONE = "none"
    FEE = "fee"
    DONATION = "donation"
    SERVICE = "service"
    MIXED = "mixed"

    @property
    def carries_amount(self) -> bool:
        return self in (FeeType.FEE, FeeType.MIXED)


class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    PROMOTED = "promoted"
    TRANSFERRED = "transferred"
    GRADUATED = "graduated"
    WITHDRAWN = "withdrawn"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


class ContributionType(str, Enum):
    SERVICE = "service"
    MATERIALS = "materials"
    LABOR = "labor"
    OTHER = "other"


def _enum_column(enum_cls, **kw):
    return db.Column(
        db.Enum(enum_cls, native_enum=False, length=20,
                values_callable=lambda e: [m.value for m in e]),
        **kw,
    )


class SoftDeleteMixin:
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    deleted_at = db.Column(db.DateTime)

    def soft_delete(self, when: datetime | None = None):
        self.is_deleted = True
        self.deleted_at = when or utcnow()

    @classmethod
    def active(cls):
        return cls.query.filter(cls.is_deleted.is_(False))


# --- Users ---
class User(UserMixin, SoftDeleteMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(200))
    email = db.Column(db.String(255))
    password_hash = db.Column(db.String(255), nullable=False)
    role = _enum_column(Role, nullable=False, default=Role.TEACHER)

    @property
    def is_active(self) -> bool:
        return not self.is_deleted


# --- School Years ---
class SchoolYear(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(40), unique=True, nullable=False)  # e.g. "2024-2025"
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    is_current = db.Column(db.Boolean, nullable=False, default=False)

    # at most one row may carry the flag
    __table_args__ = (
        db.Index("uq_school_year_current", "is_current", unique=True,
                 sqlite_where=db.text("is_current = 1"),
                 postgresql_where=db.text("is_current")),
    )


# --- Grades & Sections ---
class Grade(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(40), unique=True, nullable=False)

    sections = db.relationship("Section", back_populates="grade", lazy=True)


class Section(SoftDeleteMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    grade_id = db.Column(db.Integer, db.ForeignKey("grade.id"), nullable=False, index=True)
    name = db.Column(db.String(80), nullable=False)

    grade = db.relationship("Grade", back_populates="sections", lazy=True)

    __table_args__ = (
        db.Index("uq_section_grade_name", "grade_id", "name", unique=True,
                 sqlite_where=db.text("is_deleted = 0"),
                 postgresql_where=db.text("NOT is_deleted")),
    )


# --- Students & Parents ---
class Student(SoftDeleteMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False, index=True)
    last_name = db.Column(db.String(100), nullable=False, index=True)
    lrn = db.Column(db.String(32), nullable=False)
    picture_ref = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    enrollments = db.relationship("StudentEnrollment", back_populates="student", lazy=True)
    parent_links = db.relationship("ParentLink", back_populates="student", lazy=True,
                                   cascade="all, delete-orphan")

    __table_args__ = (
        db.Index("uq_student_lrn_active", "lrn", unique=True,
                 sqlite_where=db.text("is_deleted = 0"),
                 postgresql_where=db.text("NOT is_deleted")),
    )


class Parent(SoftDeleteMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    contact_info = db.Column(db.String(255))


class ParentLink(db.Model):
    __tablename__ = "student_parent"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("student.id"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("parent.id"), nullable=False, index=True)
    relation = db.Column(db.String(40))

    student = db.relationship("Student", back_populates="parent_links", lazy=True)
    parent = db.relationship("Parent", lazy=True)

    __table_args__ = (
        db.UniqueConstraint("student_id", "parent_id", name="uq_student_parent"),
    )


# --- Enrollment (one placement per student per school year) ---
class StudentEnrollment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("student.id"), nullable=False, index=True)
    school_year_id = db.Column(db.Integer, db.ForeignKey("school_year.id"), nullable=False, index=True)
    grade_id = db.Column(db.Integer, db.ForeignKey("grade.id"), nullable=False)
    section_id = db.Column(db.Integer, db.ForeignKey("section.id"), nullable=False, index=True)
    status = _enum_column(EnrollmentStatus, nullable=False, default=EnrollmentStatus.ACTIVE)
    enrolled_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    student = db.relationship("Student", back_populates="enrollments", lazy=True)
    school_year = db.relationship("SchoolYear", lazy=True)
    section = db.relationship("Section", lazy=True)

    __table_args__ = (
        db.UniqueConstraint("student_id", "school_year_id", name="uq_enrollment_student_year"),
    )


# --- Teacher <-> Section, per school year ---
class TeacherSectionAssignment(db.Model):
    __tablename__ = "teacher_section"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    section_id = db.Column(db.Integer, db.ForeignKey("section.id"), nullable=False)
    school_year_id = db.Column(db.Integer, db.ForeignKey("school_year.id"), nullable=False)

    teacher = db.relationship("User", lazy=True)
    section = db.relationship("Section", lazy=True)

    __table_args__ = (
        db.UniqueConstraint("section_id", "school_year_id", name="uq_teacher_section_year"),
    )


# --- Activities ---
class Activity(SoftDeleteMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    activity_date = db.Column(db.Date, nullable=False, index=True)
    school_year_id = db.Column(db.Integer, db.ForeignKey("school_year.id"), nullable=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    fee_type = _enum_column(FeeType, nullable=False, default=FeeType.NONE)
    fee_amount = db.Column(db.Numeric(10, 2))
    payments_enabled = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    assignments = db.relationship("ActivityAssignment", back_populates="activity", lazy=True)
    creator = db.relationship("User", lazy=True)


class ActivityAssignment(SoftDeleteMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    activity_id = db.Column(db.Integer, db.ForeignKey("activity.id"), nullable=False, index=True)
    grade_id = db.Column(db.Integer, db.ForeignKey("grade.id"), nullable=False)
    section_id = db.Column(db.Integer, db.ForeignKey("section.id"), nullable=False, index=True)

    activity = db.relationship("Activity", back_populates="assignments", lazy=True)
    section = db.relationship("Section", lazy=True)

    __table_args__ = (
        db.UniqueConstraint("activity_id", "grade_id", "section_id", name="uq_activity_assignment"),
    )


# --- Ledger rows (attached to one activity assignment) ---
class AttendanceRecord(db.Model):
    __tablename__ = "attendance"
    id = db.Column(db.Integer, primary_key=True)
    activity_assignment_id = db.Column(db.Integer, db.ForeignKey("activity_assignment.id"),
                                       nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("student.id"), nullable=False, index=True)
    status = _enum_column(AttendanceStatus, nullable=False)
    parent_present = db.Column(db.Boolean, nullable=False, default=False)
    marked_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    marked_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("activity_assignment_id", "student_id", name="uq_attendance_assignment_student"),
    )


class PaymentRecord(db.Model):
    __tablename__ = "payment"
    id = db.Column(db.Integer, primary_key=True)
    activity_assignment_id = db.Column(db.Integer, db.ForeignKey("activity_assignment.id"),
                                       nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("student.id"), nullable=False, index=True)
    paid = db.Column(db.Boolean, nullable=False, default=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    payment_date = db.Column(db.Date)
    marked_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    marked_at = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("activity_assignment_id", "student_id", name="uq_payment_assignment_student"),
        db.CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
    )


class ContributionRecord(db.Model):
    __tablename__ = "contribution"
    id = db.Column(db.Integer, primary_key=True)
    activity_assignment_id = db.Column(db.Integer, db.ForeignKey("activity_assignment.id"),
                                       nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("student.id"), nullable=False, index=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("parent.id"), nullable=False)
    contribution_type = _enum_column(ContributionType, nullable=False)
    description = db.Column(db.Text)
    estimated_value = db.Column(db.Numeric(10, 2))
    hours_worked = db.Column(db.Numeric(6, 2))
    materials_details = db.Column(db.Text)
    recorded_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    contributed_at = db.Column(db.DateTime, nullable=False)
    verified_by = db.Column(db.Integer, db.ForeignKey("user.id"))
    verified_at = db.Column(db.DateTime)
