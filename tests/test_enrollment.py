import pytest

import enrollment
from enrollment import (
    create_student, delete_student, enroll, get_student, linked_parents, promote, transfer,
    update_student,
)
from errors import Conflict, Forbidden, NotFound, ValidationError
from models import (
    db, EnrollmentStatus, Section, Student, StudentEnrollment, TeacherSectionAssignment,
)


def _rows(student_id):
    return (StudentEnrollment.query.filter_by(student_id=student_id)
            .order_by(StudentEnrollment.school_year_id).all())


# ---------- enroll ----------
def test_enroll_twice_keeps_one_row_with_latest_placement(ctx, school, admin_scope):
    enroll(admin_scope, school.ana, school.y1, school.g1, school.s1b)
    enroll(admin_scope, school.ana, school.y1, school.g1, school.s1a)
    rows = _rows(school.ana)
    assert len(rows) == 1
    assert rows[0].section_id == school.s1a


def test_enroll_rejects_grade_mismatch_and_deleted_section(ctx, school, admin_scope):
    with pytest.raises(ValidationError):
        enroll(admin_scope, school.ana, school.y2, school.g1, school.s2a)
    db.session.get(Section, school.s1b).soft_delete()
    db.session.commit()
    with pytest.raises(ValidationError):
        enroll(admin_scope, school.ana, school.y2, school.g1, school.s1b)


def test_enroll_new_year_inserts_active_row(ctx, school, admin_scope):
    en = enroll(admin_scope, school.ana, school.y2, school.g2, school.s2a)
    assert en.status == EnrollmentStatus.ACTIVE
    assert len(_rows(school.ana)) == 2


# ---------- promote ----------
def test_promote_keeps_previous_year(ctx, school, admin_scope):
    previous, new = promote(admin_scope, ctx, school.ana, school.g2, school.s2a,
                            to_year_id=school.y2)
    rows = _rows(school.ana)
    assert [r.school_year_id for r in rows] == [school.y1, school.y2]
    assert rows[0].status == EnrollmentStatus.PROMOTED
    assert rows[1].status == EnrollmentStatus.ACTIVE
    assert rows[1].section_id == school.s2a
    assert previous.id == rows[0].id and new.id == rows[1].id


def test_promote_infers_next_year_and_custom_mark(ctx, school, admin_scope):
    previous, new = promote(admin_scope, ctx, school.ana, school.g2, school.s2a,
                            mark_previous_as="graduated")
    assert new.school_year_id == school.y2
    assert previous.status == EnrollmentStatus.GRADUATED


def test_promote_without_enrollment_is_not_found(ctx, school, admin_scope):
    st = Student(first_name="No", last_name="Row", lrn="LRN-999")
    db.session.add(st)
    db.session.commit()
    with pytest.raises(NotFound):
        promote(admin_scope, ctx, st.id, school.g2, school.s2a, to_year_id=school.y2)


def test_promote_to_same_year_is_invalid(ctx, school, admin_scope):
    with pytest.raises(ValidationError):
        promote(admin_scope, ctx, school.ana, school.g1, school.s1b, to_year_id=school.y1)


def test_teacher_promote_needs_target_section_in_target_year(ctx, school, t_scope):
    with pytest.raises(Forbidden):
        promote(t_scope, ctx, school.ana, school.g2, school.s2a, to_year_id=school.y2)
    assert len(_rows(school.ana)) == 1

    db.session.add(TeacherSectionAssignment(user_id=school.t, section_id=school.s2a,
                                            school_year_id=school.y2))
    db.session.commit()
    _, new = promote(t_scope, ctx, school.ana, school.g2, school.s2a, to_year_id=school.y2)
    assert new.section_id == school.s2a


def test_teacher_cannot_promote_student_of_another_section(ctx, school, t_scope):
    db.session.add(TeacherSectionAssignment(user_id=school.t, section_id=school.s2a,
                                            school_year_id=school.y2))
    db.session.commit()
    with pytest.raises(Forbidden):
        promote(t_scope, ctx, school.cara, school.g2, school.s2a, to_year_id=school.y2)


def test_forbidden_wins_over_grade_mismatch(ctx, school, t_scope):
    with pytest.raises(Forbidden):
        promote(t_scope, ctx, school.ana, school.g1, school.s2a, to_year_id=school.y2)


# ---------- transfer ----------
def test_transfer_moves_in_place(ctx, school, admin_scope):
    en = transfer(admin_scope, ctx, school.ana, school.g1, school.s1b)
    rows = _rows(school.ana)
    assert len(rows) == 1
    assert rows[0].id == en.id
    assert rows[0].section_id == school.s1b
    assert rows[0].status == EnrollmentStatus.ACTIVE


def test_teacher_transfer_needs_both_sections(ctx, school, t_scope, u_scope):
    with pytest.raises(Forbidden):
        transfer(t_scope, ctx, school.ana, school.g1, school.s1b)
    with pytest.raises(Forbidden):
        transfer(u_scope, ctx, school.ana, school.g1, school.s1b)
    assert _rows(school.ana)[0].section_id == school.s1a


def test_transfer_without_enrollment_is_not_found(ctx, school, admin_scope):
    with pytest.raises(NotFound):
        transfer(admin_scope, ctx, school.ana, school.g1, school.s1b, year_id=school.y2)


# ---------- student records ----------
def _payload(school, **kw):
    data = {"first_name": "Dan", "last_name": "Fox", "lrn": "LRN-100",
            "grade_id": school.g1, "section_id": school.s1a}
    data.update(kw)
    return data


def test_create_student_enrolls_and_links_parents(ctx, school, t_scope):
    st = create_student(t_scope, ctx, _payload(school, parents=[
        {"id": school.mom, "relation": "aunt"},
        {"first_name": "Pedro", "last_name": "Fox", "relation": "father"},
    ]))
    rows = _rows(st.id)
    assert len(rows) == 1 and rows[0].section_id == school.s1a
    assert sorted(rel for _, rel in linked_parents(st)) == ["aunt", "father"]


def test_create_student_rejects_duplicate_lrn_and_foreign_section(ctx, school, t_scope):
    with pytest.raises(Conflict):
        create_student(t_scope, ctx, _payload(school, lrn="LRN-001"))
    with pytest.raises(Forbidden):
        create_student(t_scope, ctx, _payload(school, section_id=school.s1b))


def test_lrn_of_deleted_student_can_be_reused(ctx, school, admin_scope):
    delete_student(admin_scope, ctx, school.ben)
    st = create_student(admin_scope, ctx, _payload(school, lrn="LRN-002"))
    assert st.lrn == "LRN-002"


def test_update_student_replaces_parent_links(ctx, school, admin_scope):
    st = update_student(admin_scope, ctx, school.ana, {
        "first_name": "Ana", "last_name": "Cruz", "lrn": "LRN-001",
        "grade_id": school.g1, "section_id": school.s1a,
        "parents": [{"first_name": "Jose", "last_name": "Cruz", "relation": "father"}],
    })
    assert [rel for _, rel in linked_parents(st)] == ["father"]


def test_student_outside_scope(ctx, school, t_scope):
    with pytest.raises(NotFound):
        get_student(t_scope, ctx, school.cara)
    with pytest.raises(Forbidden):
        delete_student(t_scope, ctx, school.cara)
    with pytest.raises(NotFound):
        get_student(t_scope, ctx, 4242)


# ---------- atomicity ----------
def test_failed_promote_leaves_previous_year_untouched(ctx, school, admin_scope, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(enrollment, "_upsert_enrollment", boom)
    with pytest.raises(RuntimeError):
        promote(admin_scope, ctx, school.ana, school.g2, school.s2a, to_year_id=school.y2)

    rows = _rows(school.ana)
    assert [r.school_year_id for r in rows] == [school.y1]
    assert rows[0].status == EnrollmentStatus.ACTIVE


def test_failed_create_student_leaves_no_student(ctx, school, admin_scope, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(enrollment, "_link_parents", boom)
    with pytest.raises(RuntimeError):
        create_student(admin_scope, ctx, _payload(school, parents=[{"id": school.mom}]))

    assert Student.query.filter_by(lrn="LRN-100").count() == 0
    assert StudentEnrollment.query.filter_by(section_id=school.s1a).count() == 2
