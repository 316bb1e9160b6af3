# ledger.py
"""Bulk attendance, payment and contribution submissions for one activity assignment.

Attendance and payments are single set-based upserts keyed on
(activity assignment, student), so resubmitting a batch is idempotent and
repairs a batch that was lost in between. Contributions are append-only.
The acting user and the server clock are stamped on every row.
"""
import logging
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from errors import ConfigurationError, Forbidden, NotFound, ValidationError
from models import (
    db, Activity, ActivityAssignment, AttendanceRecord, AttendanceStatus, ContributionRecord,
    ContributionType, EnrollmentStatus, FeeType, ParentLink, Parent, PaymentRecord, Student,
    StudentEnrollment, transaction, utcnow,
)
from school_year import SchoolYearContext
from scope import is_admin, require_section
from utils import non_empty, parse_bool, parse_choice, parse_date_any, parse_id, to_decimal

log = logging.getLogger(__name__)

ZERO = Decimal("0.00")
AMOUNT_POLICIES = ("loose", "strict")

_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def upsert(model, rows: list, keys: list, update_cols: list):
    """INSERT ... ON CONFLICT (keys) DO UPDATE for the session's dialect."""
    dialect = db.session.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise ConfigurationError(f"Bulk upsert is not supported on {dialect}")
    ins = insert(model.__table__).values(rows)
    stmt = ins.on_conflict_do_update(
        index_elements=keys,
        set_={c: ins.excluded[c] for c in update_cols},
    )
    db.session.execute(stmt)


# ---------- Guards ----------
def load_assignment(scope, ctx: SchoolYearContext, assignment_id: int) -> ActivityAssignment:
    aa = (ActivityAssignment.active()
          .join(Activity, Activity.id == ActivityAssignment.activity_id)
          .filter(ActivityAssignment.id == assignment_id, Activity.is_deleted.is_(False))
          .first())
    if aa is None:
        raise NotFound("Assignment not found")
    require_section(scope, aa.section_id, ctx.year_id, "section")
    return aa


def _batch(records) -> list:
    if not isinstance(records, list) or not records:
        raise ValidationError("No records to save")
    if not all(isinstance(r, dict) for r in records):
        raise ValidationError("Each record must be an object")
    return records


def _require_students(scope, ctx: SchoolYearContext, aa: ActivityAssignment, student_ids):
    """Every student must exist; a teacher may only write rows for the assignment's own section."""
    ids = set(student_ids)
    found = {sid for (sid,) in db.session.query(Student.id)
             .filter(Student.id.in_(ids), Student.is_deleted.is_(False))}
    missing = sorted(ids - found)
    if missing:
        raise ValidationError("Unknown students in batch", {"student_ids": missing})
    if is_admin(scope) or not ids:
        return
    placed = {sid for (sid,) in db.session.query(StudentEnrollment.student_id)
              .filter(StudentEnrollment.student_id.in_(ids),
                      StudentEnrollment.school_year_id == ctx.year_id,
                      StudentEnrollment.section_id == aa.section_id)}
    outside = sorted(ids - placed)
    if outside:
        raise Forbidden("Forbidden: students are not enrolled in this section",
                        {"student_ids": outside})


# ---------- Attendance ----------
def submit_attendance(scope, ctx: SchoolYearContext, assignment_id: int, records) -> dict:
    aa = load_assignment(scope, ctx, assignment_id)
    now = utcnow()

    rows = {}
    for r in _batch(records):
        sid = parse_id(r.get("student_id"), "student_id")
        rows[sid] = {
            "activity_assignment_id": aa.id,
            "student_id": sid,
            "status": parse_choice(AttendanceStatus, r.get("status"), "status"),
            "parent_present": parse_bool(r.get("parent_present")),
            "marked_by": scope.user_id,
            "marked_at": now,
        }
    _require_students(scope, ctx, aa, rows)

    with transaction():
        upsert(AttendanceRecord, list(rows.values()),
               keys=["activity_assignment_id", "student_id"],
               update_cols=["status", "parent_present", "marked_by", "marked_at"])
    log.info("attendance saved: assignment=%s rows=%d by user=%s", aa.id, len(rows), scope.user_id)
    return {"message": "Attendance saved", "saved": len(rows)}


# ---------- Payments ----------
def _amount_policy(override=None) -> str:
    policy = str(override or current_app.config.get("PAYMENT_AMOUNT_POLICY") or "loose").lower()
    if policy not in AMOUNT_POLICIES:
        raise ConfigurationError(f"Unknown PAYMENT_AMOUNT_POLICY {policy!r}")
    return policy


def paid_amount(raw, activity: Activity, policy: str) -> Decimal:
    amount = to_decimal(raw)
    if amount is not None and amount >= 0:
        return amount
    if policy == "loose":
        return ZERO
    if activity.fee_type == FeeType.FEE and activity.fee_amount is not None:
        return Decimal(activity.fee_amount).quantize(ZERO)
    raise ValidationError("Amount is required when marking as paid")


def submit_payments(scope, ctx: SchoolYearContext, assignment_id: int, records,
                    amount_policy: str | None = None) -> dict:
    aa = load_assignment(scope, ctx, assignment_id)
    activity = aa.activity
    policy = _amount_policy(amount_policy)
    payments_off = not activity.payments_enabled
    now = utcnow()

    rows = {}
    for r in _batch(records):
        sid = parse_id(r.get("student_id"), "student_id")
        paid = False if payments_off else parse_bool(r.get("paid"))
        amount, payment_date = ZERO, None
        if paid:
            amount = paid_amount(r.get("amount"), activity, policy)
            if non_empty(r.get("payment_date")):
                try:
                    payment_date = parse_date_any(r["payment_date"])
                except ValueError:
                    raise ValidationError(f"payment_date is not a valid date for student {sid}")
        rows[sid] = {
            "activity_assignment_id": aa.id,
            "student_id": sid,
            "paid": paid,
            "amount": amount,
            "payment_date": payment_date,
            "marked_by": scope.user_id,
            "marked_at": now,
        }
    _require_students(scope, ctx, aa, rows)

    with transaction():
        upsert(PaymentRecord, list(rows.values()),
               keys=["activity_assignment_id", "student_id"],
               update_cols=["paid", "amount", "payment_date", "marked_by", "marked_at"])
    log.info("payments saved: assignment=%s rows=%d policy=%s payments_enabled=%s",
             aa.id, len(rows), policy, not payments_off)
    return {"message": "Payments saved", "saved": len(rows)}


# ---------- Contributions ----------
def _has_detail(r: dict) -> bool:
    return any(non_empty(r.get(k)) for k in
               ("description", "estimated_value", "hours_worked", "materials_details"))


def first_parent_id(student_id: int) -> int | None:
    return (db.session.query(func.min(ParentLink.parent_id))
            .join(Parent, Parent.id == ParentLink.parent_id)
            .filter(ParentLink.student_id == student_id, Parent.is_deleted.is_(False))
            .scalar())


def _optional_number(r: dict, field: str, digits: int = 10):
    raw = r.get(field)
    if not non_empty(raw):
        return None
    value = to_decimal(raw, digits)
    if value is None:
        raise ValidationError(f"{field} must be a number below {10 ** (digits - 2)}")
    return value


def _optional_text(r: dict, field: str):
    raw = r.get(field)
    return str(raw).strip() if non_empty(raw) else None


def submit_contributions(scope, ctx: SchoolYearContext, assignment_id: int, records) -> dict:
    aa = load_assignment(scope, ctx, assignment_id)
    now = utcnow()

    candidates = []
    for r in _batch(records):
        if not non_empty(r.get("student_id")) or not non_empty(r.get("contribution_type")):
            continue
        if not _has_detail(r):
            continue
        candidates.append((parse_id(r["student_id"], "student_id"), r))
    _require_students(scope, ctx, aa, (sid for sid, _ in candidates))

    rows, skipped = [], []
    for sid, r in candidates:
        parent_id = first_parent_id(sid)
        if parent_id is None:
            if sid not in skipped:
                skipped.append(sid)
            continue
        rows.append(ContributionRecord(
            activity_assignment_id=aa.id,
            student_id=sid,
            parent_id=parent_id,
            contribution_type=parse_choice(ContributionType, r["contribution_type"], "contribution_type"),
            description=_optional_text(r, "description"),
            estimated_value=_optional_number(r, "estimated_value"),
            hours_worked=_optional_number(r, "hours_worked", digits=6),
            materials_details=_optional_text(r, "materials_details"),
            recorded_by=scope.user_id,
            contributed_at=now,
        ))

    if not rows:
        raise ValidationError("No contributions to save",
                              {"skipped_students_without_parent": skipped})

    with transaction():
        db.session.add_all(rows)
    if skipped:
        log.warning("contributions: assignment=%s skipped students without parent: %s",
                    aa.id, skipped)
    log.info("contributions saved: assignment=%s rows=%d", aa.id, len(rows))
    return {
        "message": "Contributions saved",
        "saved": len(rows),
        "skipped_students_without_parent": skipped,
    }


# ---------- Roster ----------
def assignment_roster(scope, ctx: SchoolYearContext, assignment_id: int) -> list:
    """Active students of the assignment's section this year with their ledger rows."""
    aa = load_assignment(scope, ctx, assignment_id)

    enrolled = (db.session.query(Student)
                .join(StudentEnrollment, StudentEnrollment.student_id == Student.id)
                .filter(StudentEnrollment.school_year_id == ctx.year_id,
                        StudentEnrollment.section_id == aa.section_id,
                        StudentEnrollment.grade_id == aa.grade_id,
                        StudentEnrollment.status == EnrollmentStatus.ACTIVE,
                        Student.is_deleted.is_(False))
                .order_by(Student.last_name, Student.first_name)
                .all())

    attendance = {r.student_id: r for r in
                  AttendanceRecord.query.filter_by(activity_assignment_id=aa.id)}
    payments = {r.student_id: r for r in
                PaymentRecord.query.filter_by(activity_assignment_id=aa.id)}
    totals = {
        sid: (n, value, hours) for sid, n, value, hours in
        db.session.query(ContributionRecord.student_id,
                         func.count(ContributionRecord.id),
                         func.coalesce(func.sum(ContributionRecord.estimated_value), 0),
                         func.coalesce(func.sum(ContributionRecord.hours_worked), 0))
        .filter(ContributionRecord.activity_assignment_id == aa.id)
        .group_by(ContributionRecord.student_id)
    }

    roster = []
    for st in enrolled:
        n, value, hours = totals.get(st.id, (0, 0, 0))
        roster.append({
            "student": st,
            "attendance": attendance.get(st.id),
            "payment": payments.get(st.id),
            "contribution_count": n,
            "contribution_value": Decimal(value).quantize(ZERO),
            "contribution_hours": Decimal(hours).quantize(ZERO),
        })
    return roster
