# enrollment.py
"""Per-year placement of students.

A student has at most one ``StudentEnrollment`` row per school year. Rows of
past years are kept: promotion marks the old row and upserts the new one,
transfer moves the row of one year in place.
"""
import logging

from sqlalchemy.exc import IntegrityError

from errors import Conflict, Forbidden, NotFound, ValidationError
from models import (
    db, EnrollmentStatus, Parent, ParentLink, Student, StudentEnrollment,
    transaction, utcnow,
)
from school_year import SchoolYearContext, get_year, next_year_id
from scope import holds_section, is_admin, require_section
from sections import check_section_grade, load_target_section
from utils import parse_choice, parse_id, require_fields

log = logging.getLogger(__name__)


def get_active_student(student_id: int) -> Student:
    s = Student.active().filter(Student.id == student_id).first()
    if s is None:
        raise NotFound(f"Student {student_id} not found")
    return s


def find_enrollment(student_id: int, year_id: int) -> StudentEnrollment | None:
    return StudentEnrollment.query.filter_by(student_id=student_id, school_year_id=year_id).first()


def _upsert_enrollment(student_id, year_id, grade_id, section_id, status=None) -> StudentEnrollment:
    en = find_enrollment(student_id, year_id)
    if en is None:
        en = StudentEnrollment(student_id=student_id, school_year_id=year_id,
                               grade_id=grade_id, section_id=section_id,
                               status=status or EnrollmentStatus.ACTIVE,
                               enrolled_at=utcnow())
        db.session.add(en)
    else:
        en.grade_id = grade_id
        en.section_id = section_id
        if status is not None:
            en.status = status
    return en


# ---------- Placement ----------
def enroll(scope, student_id: int, year_id: int, grade_id: int, section_id: int) -> StudentEnrollment:
    get_active_student(student_id)
    get_year(year_id)
    section = load_target_section(section_id)

    require_section(scope, section_id, year_id, "target section")
    existing = find_enrollment(student_id, year_id)
    if existing is not None and existing.section_id != section_id:
        require_section(scope, existing.section_id, year_id, "current section")
    check_section_grade(section, grade_id)

    try:
        with transaction():
            en = _upsert_enrollment(student_id, year_id, grade_id, section_id)
    except IntegrityError:
        raise Conflict("Student is already enrolled for this school year")
    log.info("enrolled student=%s year=%s section=%s", student_id, year_id, section_id)
    return en


def promote(scope, ctx: SchoolYearContext, student_id: int, to_grade_id: int, to_section_id: int,
            to_year_id: int | None = None, from_year_id: int | None = None,
            mark_previous_as=EnrollmentStatus.PROMOTED):
    """Close the placement of one year and open the one of the next.

    Returns ``(previous, new)`` enrollment rows.
    """
    get_active_student(student_id)
    from_year_id = from_year_id or ctx.year_id
    get_year(from_year_id)
    if to_year_id is None:
        to_year_id = next_year_id(from_year_id)
        if to_year_id is None:
            raise ValidationError("Target school year not provided and could not infer the next one")
    get_year(to_year_id)
    if to_year_id == from_year_id:
        raise ValidationError("Target school year must differ from the current one")
    if mark_previous_as is not None:
        mark_previous_as = parse_choice(EnrollmentStatus, mark_previous_as, "mark_previous_as")

    previous = find_enrollment(student_id, from_year_id)
    if previous is None:
        raise NotFound("No enrollment to promote from for this school year")
    section = load_target_section(to_section_id)

    require_section(scope, previous.section_id, from_year_id, "current section")
    require_section(scope, to_section_id, to_year_id, "target section")
    check_section_grade(section, to_grade_id)

    try:
        with transaction():
            if mark_previous_as is not None:
                previous.status = mark_previous_as
            new = _upsert_enrollment(student_id, to_year_id, to_grade_id, to_section_id,
                                     status=EnrollmentStatus.ACTIVE)
    except IntegrityError:
        raise Conflict("Concurrent enrollment change for this student")
    log.info("promoted student=%s year %s -> %s section=%s",
             student_id, from_year_id, to_year_id, to_section_id)
    return previous, new


def transfer(scope, ctx: SchoolYearContext, student_id: int, to_grade_id: int, to_section_id: int,
             year_id: int | None = None) -> StudentEnrollment:
    get_active_student(student_id)
    year_id = year_id or ctx.year_id
    get_year(year_id)
    en = find_enrollment(student_id, year_id)
    if en is None:
        raise NotFound("No enrollment for this school year")
    section = load_target_section(to_section_id)

    require_section(scope, en.section_id, year_id, "current section")
    require_section(scope, to_section_id, year_id, "target section")
    check_section_grade(section, to_grade_id)

    with transaction():
        en.grade_id = to_grade_id
        en.section_id = to_section_id
    log.info("transferred student=%s year=%s to section=%s", student_id, year_id, to_section_id)
    return en


# ---------- Student records ----------
def _parse_parents(items) -> list:
    """Validate parent entries up front; returns [(Parent | dict, relation)]."""
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("parents must be a list")
    out, seen = [], set()
    for p in items:
        if not isinstance(p, dict):
            raise ValidationError("Each parent must be an object")
        relation = (p.get("relation") or "").strip() or None
        if p.get("id"):
            pid = parse_id(p["id"], "parent id")
            parent = Parent.active().filter(Parent.id == pid).first()
            if parent is None:
                raise ValidationError(f"Parent id {pid} not found")
            if pid in seen:
                continue
            seen.add(pid)
            out.append((parent, relation))
        else:
            require_fields(p, "first_name", "last_name")
            out.append(({
                "first_name": p["first_name"].strip(),
                "last_name": p["last_name"].strip(),
                "contact_info": (p.get("contact_info") or "").strip() or None,
            }, relation))
    return out


def _link_parents(student: Student, entries: list):
    for parent, relation in entries:
        if isinstance(parent, dict):
            parent = Parent(**parent)
            db.session.add(parent)
            db.session.flush()
        student.parent_links.append(ParentLink(parent_id=parent.id, relation=relation))


def _lrn_taken(lrn: str, exclude_id: int | None = None) -> bool:
    q = Student.active().filter(Student.lrn == lrn)
    if exclude_id is not None:
        q = q.filter(Student.id != exclude_id)
    return q.first() is not None


def _student_fields(data: dict):
    require_fields(data, "first_name", "last_name", "lrn", "grade_id", "section_id")
    return (
        str(data["first_name"]).strip(),
        str(data["last_name"]).strip(),
        str(data["lrn"]).strip(),
        parse_id(data["grade_id"], "grade_id"),
        parse_id(data["section_id"], "section_id"),
    )


def create_student(scope, ctx: SchoolYearContext, data: dict) -> Student:
    first, last, lrn, grade_id, section_id = _student_fields(data)
    section = load_target_section(section_id)
    require_section(scope, section_id, ctx.year_id, "section")
    check_section_grade(section, grade_id)
    if _lrn_taken(lrn):
        raise Conflict("LRN already exists")
    parents = _parse_parents(data.get("parents"))

    try:
        with transaction():
            st = Student(first_name=first, last_name=last, lrn=lrn,
                         picture_ref=data.get("picture_ref") or None)
            db.session.add(st)
            db.session.flush()
            _upsert_enrollment(st.id, ctx.year_id, grade_id, section_id,
                               status=EnrollmentStatus.ACTIVE)
            _link_parents(st, parents)
    except IntegrityError:
        raise Conflict("Duplicate entry")
    log.info("created student id=%s lrn=%s in section=%s", st.id, lrn, section_id)
    return st


def update_student(scope, ctx: SchoolYearContext, student_id: int, data: dict) -> Student:
    st = get_active_student(student_id)
    first, last, lrn, grade_id, section_id = _student_fields(data)
    section = load_target_section(section_id)

    if not is_admin(scope):
        current = find_enrollment(student_id, ctx.year_id)
        if current is None or not holds_section(scope, current.section_id):
            raise Forbidden("Forbidden: student is not in your section")
        require_section(scope, section_id, ctx.year_id, "target section")
    check_section_grade(section, grade_id)
    if _lrn_taken(lrn, exclude_id=student_id):
        raise Conflict("LRN already in use")
    parents = _parse_parents(data.get("parents"))

    try:
        with transaction():
            st.first_name, st.last_name, st.lrn = first, last, lrn
            if "picture_ref" in data:
                st.picture_ref = data.get("picture_ref") or None
            _upsert_enrollment(student_id, ctx.year_id, grade_id, section_id)
            st.parent_links.clear()
            db.session.flush()
            _link_parents(st, parents)
    except IntegrityError:
        raise Conflict("Duplicate entry")
    log.info("updated student id=%s", student_id)
    return st


def delete_student(scope, ctx: SchoolYearContext, student_id: int) -> Student:
    st = get_active_student(student_id)
    if not is_admin(scope):
        current = find_enrollment(student_id, ctx.year_id)
        if current is None or not holds_section(scope, current.section_id):
            raise Forbidden("Forbidden: student is not in your section")
    with transaction():
        st.soft_delete()
    log.info("soft-deleted student id=%s", student_id)
    return st


def get_student(scope, ctx: SchoolYearContext, student_id: int) -> Student:
    st = Student.active().filter(Student.id == student_id).first()
    if st is None:
        raise NotFound("Student not found")
    if not is_admin(scope):
        current = find_enrollment(student_id, ctx.year_id)
        if current is None or not holds_section(scope, current.section_id):
            raise NotFound("Student not found")
    return st


def linked_parents(student: Student) -> list:
    return [(link.parent, link.relation) for link in student.parent_links
            if not link.parent.is_deleted]
