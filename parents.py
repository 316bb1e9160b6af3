# parents.py
"""Parents outside of any school year.

A parent is shared by every student linked to it. Teachers may change a parent
that is linked to one of their current students, or one nobody is linked to
yet; admins may change any.
"""
import logging

from errors import Forbidden, NotFound, ValidationError
from models import db, Parent, ParentLink, Student, StudentEnrollment, transaction
from school_year import SchoolYearContext
from scope import holds_section, is_admin
from utils import parse_id, require_fields

log = logging.getLogger(__name__)

MAX_PUPIL_LOOKUP = 50


def _fields(data: dict):
    require_fields(data, "first_name", "last_name")
    return (
        str(data["first_name"]).strip(),
        str(data["last_name"]).strip(),
        str(data.get("contact_info") or "").strip() or None,
    )


def _linked_student_ids(parent_id: int) -> set:
    rows = (db.session.query(ParentLink.student_id)
            .join(Student, Student.id == ParentLink.student_id)
            .filter(ParentLink.parent_id == parent_id, Student.is_deleted.is_(False)))
    return {sid for (sid,) in rows}


def _teaches_any(scope, ctx: SchoolYearContext, student_ids: set) -> bool:
    return (db.session.query(StudentEnrollment.id)
            .filter(StudentEnrollment.student_id.in_(student_ids),
                    StudentEnrollment.school_year_id == ctx.year_id,
                    StudentEnrollment.section_id.in_(scope.section_ids or [-1]))
            .first() is not None)


def _may_change(scope, ctx: SchoolYearContext, parent: Parent) -> bool:
    if is_admin(scope):
        return True
    linked = _linked_student_ids(parent.id)
    return not linked or _teaches_any(scope, ctx, linked)


def get_active_parent(parent_id: int) -> Parent:
    p = Parent.active().filter(Parent.id == parent_id).first()
    if p is None:
        raise NotFound(f"Parent {parent_id} not found")
    return p


# ---------- Operations ----------
def create_parent(scope, data: dict) -> Parent:
    first, last, contact = _fields(data)
    with transaction():
        p = Parent(first_name=first, last_name=last, contact_info=contact)
        db.session.add(p)
    log.info("created parent id=%s by user=%s", p.id, scope.user_id)
    return p


def update_parent(scope, ctx: SchoolYearContext, parent_id: int, data: dict) -> Parent:
    p = get_active_parent(parent_id)
    if not _may_change(scope, ctx, p):
        raise Forbidden("Forbidden: parent is not linked to your students")
    first, last, contact = _fields(data)
    with transaction():
        p.first_name, p.last_name, p.contact_info = first, last, contact
    log.info("updated parent id=%s", parent_id)
    return p


def delete_parent(scope, ctx: SchoolYearContext, parent_id: int) -> Parent:
    """Soft delete; links stay for history but the parent is no longer resolved."""
    p = get_active_parent(parent_id)
    if not _may_change(scope, ctx, p):
        raise Forbidden("Forbidden: parent is not linked to your students")
    with transaction():
        p.soft_delete()
    log.info("soft-deleted parent id=%s", parent_id)
    return p


def get_parent(scope, ctx: SchoolYearContext, parent_id: int) -> Parent:
    p = Parent.active().filter(Parent.id == parent_id).first()
    if p is None or not _may_change(scope, ctx, p):
        raise NotFound("Parent not found")
    return p


def parent_pupils(scope, ctx: SchoolYearContext, parent_ids, year_id: int | None = None) -> dict:
    """Map each parent id to its linked students placed in ``year_id``.

    Returns ``{parent_id: [(student, enrollment), ...]}``; teachers only see
    pupils in sections they hold that year.
    """
    if not isinstance(parent_ids, (list, tuple)) or not parent_ids:
        raise ValidationError("parent_ids is required")
    ids = list(dict.fromkeys(parse_id(p, "parent_ids") for p in parent_ids))
    if len(ids) > MAX_PUPIL_LOOKUP:
        raise ValidationError(f"Too many parent ids (max {MAX_PUPIL_LOOKUP})")
    year_id = year_id or ctx.year_id

    rows = (db.session.query(ParentLink.parent_id, Student, StudentEnrollment)
            .join(Parent, Parent.id == ParentLink.parent_id)
            .join(Student, Student.id == ParentLink.student_id)
            .join(StudentEnrollment, (StudentEnrollment.student_id == Student.id)
                  & (StudentEnrollment.school_year_id == year_id))
            .filter(ParentLink.parent_id.in_(ids),
                    Parent.is_deleted.is_(False),
                    Student.is_deleted.is_(False))
            .order_by(ParentLink.parent_id, Student.last_name, Student.first_name))

    mapping = {pid: [] for pid in ids}
    for pid, st, en in rows:
        if holds_section(scope, en.section_id, year_id):
            mapping[pid].append((st, en))
    return mapping
