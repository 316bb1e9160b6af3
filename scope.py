# scope.py
"""Who may touch what.

A request's identity is turned into a scope exactly once: ``AdminScope`` is
unrestricted, ``TeacherScope`` carries the sections the teacher holds in the
resolved school year. Services receive the scope as an argument and ask it
questions instead of re-deriving roles inline.

Existence is always checked before ownership. On write paths an out-of-scope
entity is ``Forbidden``; on read paths it is reported as ``NotFound`` so
callers cannot probe for rows they may not see.
"""
from dataclasses import dataclass

from flask import g
from flask_login import current_user
from sqlalchemy import or_

from errors import Forbidden
from models import (
    db, Role, Section, Student, StudentEnrollment, Activity, ActivityAssignment,
    TeacherSectionAssignment,
)
from school_year import SchoolYearContext, resolve_current_year


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: Role


@dataclass(frozen=True)
class AdminScope:
    user_id: int
    year_id: int


@dataclass(frozen=True)
class TeacherScope:
    user_id: int
    year_id: int
    section_ids: frozenset


def is_admin(scope) -> bool:
    return isinstance(scope, AdminScope)


def teacher_section_ids(user_id: int, year_id: int) -> frozenset:
    rows = (db.session.query(TeacherSectionAssignment.section_id)
            .filter(TeacherSectionAssignment.user_id == user_id,
                    TeacherSectionAssignment.school_year_id == year_id)
            .all())
    return frozenset(r[0] for r in rows)


def resolve_scope(identity: Identity, ctx: SchoolYearContext):
    if identity.role == Role.ADMIN:
        return AdminScope(user_id=identity.user_id, year_id=ctx.year_id)
    if identity.role == Role.TEACHER:
        return TeacherScope(user_id=identity.user_id, year_id=ctx.year_id,
                            section_ids=teacher_section_ids(identity.user_id, ctx.year_id))
    raise Forbidden("Unknown role")


# ---------- Request boundary ----------
def current_identity() -> Identity:
    if not current_user.is_authenticated:
        raise Forbidden("Not authenticated")
    return Identity(user_id=current_user.id, role=Role(current_user.role))


def current_year() -> SchoolYearContext:
    if "year_ctx" not in g:
        g.year_ctx = resolve_current_year()
    return g.year_ctx


def current_scope():
    if "scope" not in g:
        g.scope = resolve_scope(current_identity(), current_year())
    return g.scope


# ---------- Checks ----------
def holds_section(scope, section_id: int, year_id: int | None = None) -> bool:
    if is_admin(scope):
        return True
    if year_id is None or year_id == scope.year_id:
        return section_id in scope.section_ids
    return (TeacherSectionAssignment.query
            .filter_by(user_id=scope.user_id, section_id=section_id, school_year_id=year_id)
            .first() is not None)


def require_admin(scope):
    if not is_admin(scope):
        raise Forbidden("Admins only")


def require_section(scope, section_id: int, year_id: int | None = None, what: str = "section"):
    if not holds_section(scope, section_id, year_id):
        raise Forbidden(f"Forbidden: {what} not assigned to you")


def require_creator_or_admin(scope, activity: Activity):
    if not is_admin(scope) and activity.created_by != scope.user_id:
        raise Forbidden("Forbidden: only the creator or an admin may change this activity")


# ---------- Read filters for listings / exports ----------
def visible_sections_query(scope):
    q = Section.active()
    if not is_admin(scope):
        q = q.filter(Section.id.in_(scope.section_ids or [-1]))
    return q


def visible_students_query(scope):
    q = Student.active()
    if not is_admin(scope):
        q = q.join(StudentEnrollment, StudentEnrollment.student_id == Student.id).filter(
            StudentEnrollment.school_year_id == scope.year_id,
            StudentEnrollment.section_id.in_(scope.section_ids or [-1]),
        )
    return q


def visible_activities_query(scope):
    q = Activity.active().filter(Activity.school_year_id == scope.year_id)
    if not is_admin(scope):
        in_my_section = (db.session.query(ActivityAssignment.id)
                         .filter(ActivityAssignment.activity_id == Activity.id,
                                 ActivityAssignment.is_deleted.is_(False),
                                 ActivityAssignment.section_id.in_(scope.section_ids or [-1]))
                         .exists())
        q = q.filter(or_(Activity.created_by == scope.user_id, in_my_section))
    return q
