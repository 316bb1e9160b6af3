# teacher_sections.py
"""Exclusive binding of a teacher to a section for one school year.

(section, school year) is unique at the storage layer; the checks below only
turn the common case into a readable Conflict before anything is written.
"""
import logging

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from errors import Conflict, NotFound
from models import (
    db, Activity, ActivityAssignment, Role, TeacherSectionAssignment, User,
    transaction, utcnow,
)
from school_year import SchoolYearContext, get_year
from scope import require_admin
from sections import check_section_grade, get_section, load_target_section
from utils import parse_id, require_fields

log = logging.getLogger(__name__)


def get_teacher(teacher_id: int) -> User:
    u = User.active().filter(User.id == teacher_id, User.role == Role.TEACHER).first()
    if u is None:
        raise NotFound(f"Teacher {teacher_id} not found")
    return u


def section_holder(section_id: int, year_id: int) -> TeacherSectionAssignment | None:
    return TeacherSectionAssignment.query.filter_by(section_id=section_id, school_year_id=year_id).first()


def _ensure_free(section_id: int, year_id: int, teacher_id: int):
    holder = section_holder(section_id, year_id)
    if holder is not None and holder.user_id != teacher_id:
        raise Conflict("Section already assigned to another teacher for this school year")
    return holder


def _replace_rows(teacher_id: int, section_id: int, year_id: int) -> TeacherSectionAssignment:
    (TeacherSectionAssignment.query
     .filter_by(user_id=teacher_id, school_year_id=year_id)
     .delete(synchronize_session="fetch"))
    db.session.flush()
    row = TeacherSectionAssignment(user_id=teacher_id, section_id=section_id, school_year_id=year_id)
    db.session.add(row)
    return row


def _drop_everything(teacher_id: int) -> dict:
    now = utcnow()
    removed = (TeacherSectionAssignment.query.filter_by(user_id=teacher_id)
               .delete(synchronize_session="fetch"))
    ids = [a.id for a in Activity.active().filter(Activity.created_by == teacher_id)]
    if ids:
        (ActivityAssignment.query
         .filter(ActivityAssignment.activity_id.in_(ids), ActivityAssignment.is_deleted.is_(False))
         .update({"is_deleted": True, "deleted_at": now}, synchronize_session="fetch"))
        (Activity.query.filter(Activity.id.in_(ids))
         .update({"is_deleted": True, "deleted_at": now}, synchronize_session="fetch"))
    return {"assignments_removed": removed, "activities_deleted": len(ids)}


# ---------- Assignment operations ----------
def assign(scope, teacher_id: int, section_id: int, year_id: int) -> TeacherSectionAssignment:
    get_teacher(teacher_id)
    get_section(section_id)
    get_year(year_id)
    require_admin(scope)

    holder = _ensure_free(section_id, year_id, teacher_id)
    if holder is not None:
        return holder
    try:
        with transaction():
            row = TeacherSectionAssignment(user_id=teacher_id, section_id=section_id,
                                           school_year_id=year_id)
            db.session.add(row)
    except IntegrityError:
        raise Conflict("Section already assigned to another teacher for this school year")
    log.info("assigned teacher=%s to section=%s year=%s", teacher_id, section_id, year_id)
    return row


def reassign(scope, teacher_id: int, new_section_id: int, year_id: int) -> TeacherSectionAssignment:
    """Replace every section the teacher holds in ``year_id`` with ``new_section_id``."""
    get_teacher(teacher_id)
    get_section(new_section_id)
    get_year(year_id)
    require_admin(scope)
    _ensure_free(new_section_id, year_id, teacher_id)

    try:
        with transaction():
            row = _replace_rows(teacher_id, new_section_id, year_id)
    except IntegrityError:
        raise Conflict("Section already assigned to another teacher for this school year")
    log.info("reassigned teacher=%s to section=%s year=%s", teacher_id, new_section_id, year_id)
    return row


def unassign_all(scope, teacher_id: int) -> dict:
    get_teacher(teacher_id)
    require_admin(scope)
    with transaction():
        summary = _drop_everything(teacher_id)
    log.info("unassigned teacher=%s: %s", teacher_id, summary)
    return summary


# ---------- Teacher accounts ----------
def _account_taken(username: str, email: str, exclude_id: int | None = None) -> bool:
    q = User.query.filter(or_(
        User.username == username,
        and_(User.email == email, User.is_deleted.is_(False)),
    ))
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return q.first() is not None


def create_teacher(scope, ctx: SchoolYearContext, data: dict) -> User:
    require_admin(scope)
    require_fields(data, "full_name", "email", "username", "password", "grade_id", "section_id")
    username = str(data["username"]).strip()
    email = str(data["email"]).strip()
    grade_id = parse_id(data["grade_id"], "grade_id")
    section_id = parse_id(data["section_id"], "section_id")

    if _account_taken(username, email):
        raise Conflict("Username or email already in use")
    section = load_target_section(section_id)
    check_section_grade(section, grade_id)
    _ensure_free(section_id, ctx.year_id, teacher_id=-1)

    try:
        with transaction():
            u = User(username=username, email=email, full_name=str(data["full_name"]).strip(),
                     role=Role.TEACHER, password_hash=generate_password_hash(data["password"]))
            db.session.add(u)
            db.session.flush()
            db.session.add(TeacherSectionAssignment(user_id=u.id, section_id=section_id,
                                                    school_year_id=ctx.year_id))
    except IntegrityError:
        raise Conflict("Duplicate entry")
    log.info("created teacher %s (id=%s) for section=%s", username, u.id, section_id)
    return u


def update_teacher(scope, ctx: SchoolYearContext, teacher_id: int, data: dict) -> User:
    u = get_teacher(teacher_id)
    require_admin(scope)
    require_fields(data, "full_name", "email", "username", "grade_id", "section_id")
    username = str(data["username"]).strip()
    email = str(data["email"]).strip()
    grade_id = parse_id(data["grade_id"], "grade_id")
    section_id = parse_id(data["section_id"], "section_id")

    if _account_taken(username, email, exclude_id=teacher_id):
        raise Conflict("Username or email already used")
    section = load_target_section(section_id)
    check_section_grade(section, grade_id)
    _ensure_free(section_id, ctx.year_id, teacher_id)

    password = str(data.get("password") or "").strip()
    try:
        with transaction():
            u.full_name = str(data["full_name"]).strip()
            u.email = email
            u.username = username
            if password:
                u.password_hash = generate_password_hash(password)
            _replace_rows(teacher_id, section_id, ctx.year_id)
    except IntegrityError:
        raise Conflict("Duplicate entry")
    log.info("updated teacher id=%s, section=%s", teacher_id, section_id)
    return u


def deactivate_teacher(scope, teacher_id: int) -> dict:
    u = get_teacher(teacher_id)
    require_admin(scope)
    with transaction():
        u.soft_delete()
        summary = _drop_everything(teacher_id)
    log.info("deactivated teacher id=%s: %s", teacher_id, summary)
    return summary
