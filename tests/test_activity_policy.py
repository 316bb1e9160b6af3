from decimal import Decimal

import pytest

from activity_policy import (
    AllSections, GradeList, SingleSection, create_activity, delete_activity, get_activity,
    list_activities, next_fee_type, parse_assignment_scope, update_activity,
)
from errors import Forbidden, NotFound, ValidationError
from models import db, ActivityAssignment, FeeType, Section


def _sections(activity):
    return sorted(aa.section_id for aa in
                  ActivityAssignment.query.filter_by(activity_id=activity.id))


@pytest.mark.parametrize("current,was,now,creator,expected", [
    (FeeType.NONE, False, True, True, FeeType.MIXED),
    (FeeType.NONE, False, True, False, FeeType.NONE),
    (FeeType.MIXED, True, False, True, FeeType.MIXED),
    (FeeType.NONE, True, True, True, FeeType.NONE),
    (FeeType.FEE, False, True, True, FeeType.FEE),
])
def test_next_fee_type(current, was, now, creator, expected):
    assert next_fee_type(current, was, now, creator) == expected


def test_parse_assignment_scope():
    assert parse_assignment_scope({}) == AllSections()
    assert parse_assignment_scope({"assignment_mode": "grades", "grade_ids": [2, "1", 2]}) == GradeList((1, 2))
    assert parse_assignment_scope({"section_id": 5}, default_mode="SECTION") == SingleSection(5)
    with pytest.raises(ValidationError):
        parse_assignment_scope({"assignment_mode": "GRADES", "grade_ids": []})
    with pytest.raises(ValidationError):
        parse_assignment_scope({"assignment_mode": "EVERYWHERE"})


# ---------- admin path ----------
def test_admin_all_expands_to_every_live_section(ctx, school, admin_scope):
    db.session.get(Section, school.s1b).soft_delete()
    db.session.commit()
    a = create_activity(admin_scope, ctx, {"title": "Fair", "activity_date": "2024-10-01",
                                           "fee_amount": "150"})
    assert _sections(a) == sorted([school.s1a, school.s2a])
    assert a.fee_type == FeeType.FEE
    assert a.fee_amount == Decimal("150.00")
    assert a.payments_enabled


def test_admin_grades_and_fee_amount_only_for_fee_types(ctx, school, admin_scope):
    a = create_activity(admin_scope, ctx, {"title": "Drive", "activity_date": "2024-10-02",
                                           "assignment_mode": "GRADES", "grade_ids": [school.g1],
                                           "fee_type": "donation", "fee_amount": 50})
    assert _sections(a) == sorted([school.s1a, school.s1b])
    assert a.fee_type == FeeType.DONATION
    assert a.fee_amount is None


def test_admin_rejects_negative_fee_and_empty_expansion(ctx, school, admin_scope):
    with pytest.raises(ValidationError):
        create_activity(admin_scope, ctx, {"title": "X", "activity_date": "2024-10-02",
                                           "fee_amount": -1})
    Section.query.filter_by(grade_id=school.g2).update({"is_deleted": True})
    db.session.commit()
    with pytest.raises(ValidationError):
        create_activity(admin_scope, ctx, {"title": "X", "activity_date": "2024-10-02",
                                           "assignment_mode": "GRADES", "grade_ids": [school.g2]})


# ---------- teacher path ----------
def test_fee_type_lifting_scenario(ctx, school, t_scope, u_scope):
    a = create_activity(t_scope, ctx, {"title": "Outing", "activity_date": "2024-11-05",
                                       "section_id": school.s1a, "payments_enabled": False,
                                       "fee_type": "fee", "fee_amount": 99})
    assert a.fee_type == FeeType.NONE
    assert a.fee_amount is None
    assert _sections(a) == [school.s1a]

    a = update_activity(t_scope, ctx, a.id, {"payments_enabled": True})
    assert a.fee_type == FeeType.MIXED

    with pytest.raises(Forbidden):
        update_activity(u_scope, ctx, a.id, {"payments_enabled": True})


def test_disabling_payments_never_rolls_back(ctx, school, t_scope):
    a = create_activity(t_scope, ctx, {"title": "Outing", "activity_date": "2024-11-05",
                                       "section_id": school.s1a})
    assert a.fee_type == FeeType.MIXED
    a = update_activity(t_scope, ctx, a.id, {"payments_enabled": False})
    assert a.fee_type == FeeType.MIXED
    assert not a.payments_enabled


def test_teacher_ignores_fee_fields_on_edit(ctx, school, t_scope):
    a = create_activity(t_scope, ctx, {"title": "Outing", "activity_date": "2024-11-05",
                                       "section_id": school.s1a, "payments_enabled": False})
    with pytest.raises(ValidationError):
        update_activity(t_scope, ctx, a.id, {"fee_type": "fee"})
    assert update_activity(t_scope, ctx, a.id, {"title": "Trip", "fee_type": "fee"}).fee_type == FeeType.NONE


def test_teacher_scope_limits(ctx, school, t_scope):
    base = {"title": "Outing", "activity_date": "2024-11-05"}
    with pytest.raises(Forbidden):
        create_activity(t_scope, ctx, dict(base, assignment_mode="ALL"))
    with pytest.raises(Forbidden):
        create_activity(t_scope, ctx, dict(base, section_id=school.s1b))
    with pytest.raises(ValidationError):
        create_activity(t_scope, ctx, base)
    with pytest.raises(ValidationError):
        create_activity(t_scope, ctx, dict(base, section_id=school.s1a, grade_id=school.g2))


def test_admin_edits_fee_policy(ctx, school, admin_scope, t_scope):
    a = create_activity(t_scope, ctx, {"title": "Outing", "activity_date": "2024-11-05",
                                       "section_id": school.s1a})
    a = update_activity(admin_scope, ctx, a.id, {"fee_type": "fee", "fee_amount": "75.5"})
    assert (a.fee_type, a.fee_amount) == (FeeType.FEE, Decimal("75.50"))
    a = update_activity(admin_scope, ctx, a.id, {"fee_type": "service"})
    assert a.fee_amount is None


def test_visibility_and_delete(ctx, school, t_scope, u_scope):
    a = create_activity(t_scope, ctx, {"title": "Outing", "activity_date": "2024-11-05",
                                       "section_id": school.s1a})
    assert get_activity(t_scope, ctx, a.id).id == a.id
    assert [x.id for x in list_activities(t_scope, ctx)] == [a.id]
    with pytest.raises(NotFound):
        get_activity(u_scope, ctx, a.id)
    assert list_activities(u_scope, ctx) == []
    with pytest.raises(Forbidden):
        delete_activity(u_scope, a.id)

    delete_activity(t_scope, a.id)
    with pytest.raises(NotFound):
        update_activity(t_scope, ctx, a.id, {"title": "again"})


def test_fee_amount_must_fit_the_column(ctx, school, admin_scope):
    for fee in ("1e30", "100000000", "NaN"):
        with pytest.raises(ValidationError):
            create_activity(admin_scope, ctx, {"title": "X", "activity_date": "2024-10-02",
                                               "fee_amount": fee})
    a = create_activity(admin_scope, ctx, {"title": "X", "activity_date": "2024-10-02",
                                           "fee_amount": "99999999.99"})
    assert a.fee_amount == Decimal("99999999.99")
