# sections.py
import logging

from sqlalchemy.exc import IntegrityError

from errors import Conflict, NotFound, ValidationError
from models import (
    db, Grade, Section, StudentEnrollment, ActivityAssignment, TeacherSectionAssignment,
    transaction,
)
from scope import require_admin

log = logging.getLogger(__name__)


def get_grade(grade_id: int) -> Grade:
    g = db.session.get(Grade, grade_id)
    if g is None:
        raise NotFound(f"Grade {grade_id} not found")
    return g


def get_section(section_id: int) -> Section:
    s = Section.active().filter(Section.id == section_id).first()
    if s is None:
        raise NotFound(f"Section {section_id} not found")
    return s


def load_target_section(section_id: int) -> Section:
    """A section named as the destination of a placement; absence is bad input."""
    s = Section.active().filter(Section.id == section_id).first()
    if s is None:
        raise ValidationError("Target section not found")
    return s


def check_section_grade(section: Section, grade_id: int):
    if section.grade_id != grade_id:
        raise ValidationError("Section does not belong to the given grade")


# ---------- Admin maintenance ----------
def create_grade(scope, name: str) -> Grade:
    require_admin(scope)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if Grade.query.filter_by(name=name).first():
        raise Conflict(f"Grade {name!r} already exists")
    with transaction():
        g = Grade(name=name)
        db.session.add(g)
    return g


def _name_taken(grade_id: int, name: str, exclude_id: int | None = None) -> bool:
    q = Section.active().filter(Section.grade_id == grade_id, Section.name == name)
    if exclude_id is not None:
        q = q.filter(Section.id != exclude_id)
    return q.first() is not None


def create_section(scope, grade_id: int, name: str) -> Section:
    require_admin(scope)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    get_grade(grade_id)
    if _name_taken(grade_id, name):
        raise Conflict("Another section with this name exists in the selected grade")
    try:
        with transaction():
            s = Section(grade_id=grade_id, name=name)
            db.session.add(s)
    except IntegrityError:
        raise Conflict("Duplicate section name in grade")
    log.info("created section %s (id=%s) in grade %s", name, s.id, grade_id)
    return s


def update_section(scope, section_id: int, grade_id: int, name: str) -> Section:
    require_admin(scope)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    s = db.session.get(Section, section_id)
    if s is None:
        raise NotFound(f"Section {section_id} not found")
    get_grade(grade_id)
    if _name_taken(grade_id, name, exclude_id=section_id):
        raise Conflict("Another section with this name exists in the selected grade")
    try:
        with transaction():
            s.grade_id = grade_id
            s.name = name
            # editing a deleted section brings it back
            s.is_deleted = False
            s.deleted_at = None
    except IntegrityError:
        raise Conflict("Duplicate section name in grade")
    return s


def delete_section(scope, section_id: int) -> Section:
    require_admin(scope)
    s = get_section(section_id)

    blockers = []
    n = StudentEnrollment.query.filter_by(section_id=section_id).count()
    if n:
        blockers.append({"type": "enrollments", "count": n})
    n = ActivityAssignment.active().filter(ActivityAssignment.section_id == section_id).count()
    if n:
        blockers.append({"type": "activity_assignments", "count": n})
    n = TeacherSectionAssignment.query.filter_by(section_id=section_id).count()
    if n:
        blockers.append({"type": "teacher_assignments", "count": n})
    if blockers:
        raise ValidationError("Section cannot be deleted because it is referenced",
                              {"blockers": blockers})

    with transaction():
        s.soft_delete()
    log.info("soft-deleted section id=%s", section_id)
    return s
