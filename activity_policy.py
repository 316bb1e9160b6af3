# activity_policy.py
"""Activities, their fee policy and their fan-out into activity assignments.

Admins classify an activity explicitly. Teachers never pick a fee type: it
follows from ``payments_enabled`` through ``next_fee_type`` and only ever
moves from ``none`` to ``mixed``.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from errors import Conflict, Forbidden, NotFound, ValidationError
from models import db, Activity, ActivityAssignment, FeeType, Section, transaction
from school_year import SchoolYearContext
from scope import is_admin, require_creator_or_admin, require_section, visible_activities_query
from sections import check_section_grade, load_target_section
from utils import non_empty, parse_bool, parse_choice, parse_id, require_date, require_fields, to_decimal

log = logging.getLogger(__name__)


# ---------- Assignment scope ----------
@dataclass(frozen=True)
class AllSections:
    pass


@dataclass(frozen=True)
class GradeList:
    grade_ids: tuple


@dataclass(frozen=True)
class SingleSection:
    section_id: int
    grade_id: int | None = None


def parse_assignment_scope(data: dict, default_mode: str = "ALL"):
    mode = str(data.get("assignment_mode") or default_mode).strip().upper()
    if mode == "ALL":
        return AllSections()
    if mode == "GRADES":
        grade_ids = data.get("grade_ids")
        if not isinstance(grade_ids, list) or not grade_ids:
            raise ValidationError("Select at least one grade")
        return GradeList(tuple(sorted({parse_id(g, "grade_ids") for g in grade_ids})))
    if mode == "SECTION":
        if not non_empty(data.get("section_id")):
            raise ValidationError("section_id is required")
        grade_id = data.get("grade_id")
        return SingleSection(
            section_id=parse_id(data["section_id"], "section_id"),
            grade_id=parse_id(grade_id, "grade_id") if non_empty(grade_id) else None,
        )
    raise ValidationError("assignment_mode must be one of: ALL, GRADES, SECTION")


def expand_scope(variant) -> list:
    """Resolve a scope variant into concrete (grade_id, section_id) pairs."""
    if isinstance(variant, SingleSection):
        section = load_target_section(variant.section_id)
        if variant.grade_id is not None:
            check_section_grade(section, variant.grade_id)
        return [(section.grade_id, section.id)]

    q = Section.active()
    if isinstance(variant, GradeList):
        q = q.filter(Section.grade_id.in_(variant.grade_ids))
    pairs = [(s.grade_id, s.id) for s in q.order_by(Section.grade_id, Section.name)]
    if not pairs:
        if isinstance(variant, GradeList):
            raise ValidationError("No sections found for the selected grades")
        raise ValidationError("No sections found to assign")
    return pairs


# ---------- Fee policy ----------
def next_fee_type(current: FeeType, was_enabled: bool, now_enabled: bool,
                  editor_is_creator: bool) -> FeeType:
    """Fee type after a teacher-side change of ``payments_enabled``.

    Only the creator switching payments on lifts ``none`` to ``mixed``;
    switching them off never rolls the fee type back.
    """
    if editor_is_creator and not was_enabled and now_enabled and current == FeeType.NONE:
        return FeeType.MIXED
    return current


def _fee_amount(raw):
    if raw is None or raw == "":
        return None
    amount = to_decimal(raw)
    if amount is None:
        raise ValidationError("fee_amount must be a number")
    if amount < 0:
        raise ValidationError("fee_amount cannot be negative")
    return amount


def _admin_fee(fee_type: FeeType, raw_amount):
    amount = _fee_amount(raw_amount)
    return fee_type, (amount if fee_type.carries_amount else None)


# ---------- Operations ----------
def create_activity(scope, ctx: SchoolYearContext, data: dict) -> Activity:
    require_fields(data, "title", "activity_date")
    title = str(data["title"]).strip()
    activity_date = require_date(data["activity_date"], "activity_date")
    payments_enabled = parse_bool(data["payments_enabled"]) if "payments_enabled" in data else True

    if is_admin(scope):
        variant = parse_assignment_scope(data)
        fee_type = parse_choice(FeeType, data.get("fee_type") or FeeType.FEE, "fee_type")
        fee_type, fee_amount = _admin_fee(fee_type, data.get("fee_amount"))
        pairs = expand_scope(variant)
    else:
        variant = parse_assignment_scope(data, default_mode="SECTION")
        if not isinstance(variant, SingleSection):
            raise Forbidden("Forbidden: teachers may only assign one of their own sections")
        section = load_target_section(variant.section_id)
        require_section(scope, section.id, ctx.year_id, "section")
        pairs = expand_scope(variant)
        fee_type = next_fee_type(FeeType.NONE, False, payments_enabled, editor_is_creator=True)
        fee_amount = None

    try:
        with transaction():
            a = Activity(title=title, activity_date=activity_date, school_year_id=ctx.year_id,
                         created_by=scope.user_id, fee_type=fee_type, fee_amount=fee_amount,
                         payments_enabled=payments_enabled)
            db.session.add(a)
            db.session.flush()
            for grade_id, section_id in pairs:
                db.session.add(ActivityAssignment(activity_id=a.id, grade_id=grade_id,
                                                  section_id=section_id))
    except IntegrityError:
        raise Conflict("Duplicate assignment for this activity")
    log.info("created activity %r (id=%s) fee_type=%s across %d section(s)",
             title, a.id, fee_type.value, len(pairs))
    return a


def _load_activity(activity_id: int) -> Activity:
    a = Activity.active().filter(Activity.id == activity_id).first()
    if a is None:
        raise NotFound("Activity not found")
    return a


def update_activity(scope, ctx: SchoolYearContext, activity_id: int, data: dict) -> Activity:
    a = _load_activity(activity_id)
    require_creator_or_admin(scope, a)

    admin = is_admin(scope)
    fields = ["title", "activity_date", "payments_enabled"]
    if admin:
        fields += ["fee_type", "fee_amount"]
    changes = {k: data[k] for k in fields if k in data}
    if not changes:
        raise ValidationError("No fields to update")

    title = a.title
    if "title" in changes:
        title = str(changes["title"] or "").strip()
        if not title:
            raise ValidationError("title cannot be empty")
    activity_date = a.activity_date
    if "activity_date" in changes:
        activity_date = require_date(changes["activity_date"], "activity_date")

    was_enabled = bool(a.payments_enabled)
    now_enabled = parse_bool(changes["payments_enabled"]) if "payments_enabled" in changes else was_enabled

    fee_type, fee_amount = a.fee_type, a.fee_amount
    if admin:
        if "fee_type" in changes:
            fee_type = parse_choice(FeeType, changes["fee_type"], "fee_type")
        if "fee_amount" in changes:
            fee_amount = _fee_amount(changes["fee_amount"])
        if not fee_type.carries_amount:
            fee_amount = None
    else:
        fee_type = next_fee_type(a.fee_type, was_enabled, now_enabled,
                                 editor_is_creator=a.created_by == scope.user_id)

    with transaction():
        a.title = title
        a.activity_date = activity_date
        a.payments_enabled = now_enabled
        a.fee_type = fee_type
        a.fee_amount = fee_amount
    log.info("updated activity id=%s fields=%s fee_type=%s",
             activity_id, sorted(changes), fee_type.value)
    return a


def delete_activity(scope, activity_id: int) -> Activity:
    a = _load_activity(activity_id)
    require_creator_or_admin(scope, a)
    with transaction():
        a.soft_delete()
    log.info("soft-deleted activity id=%s", activity_id)
    return a


def get_activity(scope, ctx: SchoolYearContext, activity_id: int) -> Activity:
    a = visible_activities_query(scope).filter(Activity.id == activity_id).first()
    if a is None:
        raise NotFound("Activity not found")
    return a


def list_activities(scope, ctx: SchoolYearContext) -> list:
    return (visible_activities_query(scope)
            .order_by(Activity.activity_date.desc(), Activity.id.desc())
            .all())


def live_assignments(activity: Activity, scope=None) -> list:
    """Non-deleted assignments of an activity, limited to the caller's sections."""
    q = ActivityAssignment.active().filter(ActivityAssignment.activity_id == activity.id)
    if scope is not None and not is_admin(scope):
        q = q.filter(ActivityAssignment.section_id.in_(scope.section_ids or [-1]))
    return q.order_by(ActivityAssignment.grade_id, ActivityAssignment.section_id).all()
