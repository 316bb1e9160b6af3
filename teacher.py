# teacher.py
from flask import Blueprint, request, jsonify
from flask_login import login_required

from activity_policy import (
    create_activity, delete_activity, get_activity, list_activities, live_assignments,
    update_activity,
)
from ledger import assignment_roster, submit_attendance, submit_contributions, submit_payments
from scope import current_scope, current_year

teacher_bp = Blueprint("teacher", __name__)


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _money(value):
    return None if value is None else str(value)


def activity_json(a, assignments=None) -> dict:
    out = {
        "id": a.id,
        "title": a.title,
        "activity_date": a.activity_date.isoformat(),
        "school_year_id": a.school_year_id,
        "created_by": a.created_by,
        "created_by_name": a.creator.full_name if a.creator else None,
        "fee_type": a.fee_type.value,
        "fee_amount": _money(a.fee_amount),
        "payments_enabled": bool(a.payments_enabled),
    }
    if assignments is not None:
        out["assignments"] = [
            {"id": aa.id, "grade_id": aa.grade_id, "section_id": aa.section_id}
            for aa in assignments
        ]
    return out


# ---------- Activities ----------
@teacher_bp.route("/activities")
@login_required
def activities():
    scope = current_scope()
    rows = list_activities(scope, current_year())
    return jsonify([activity_json(a, live_assignments(a, scope)) for a in rows])


@teacher_bp.route("/activities", methods=["POST"])
@login_required
def activity_new():
    scope = current_scope()
    a = create_activity(scope, current_year(), _body())
    return jsonify(activity_json(a, live_assignments(a))), 201


@teacher_bp.route("/activities/<int:aid>")
@login_required
def activity_detail(aid):
    scope = current_scope()
    a = get_activity(scope, current_year(), aid)
    return jsonify(activity_json(a, live_assignments(a, scope)))


@teacher_bp.route("/activities/<int:aid>", methods=["PUT"])
@login_required
def activity_edit(aid):
    a = update_activity(current_scope(), current_year(), aid, _body())
    return jsonify(activity_json(a))


@teacher_bp.route("/activities/<int:aid>", methods=["DELETE"])
@login_required
def activity_delete(aid):
    delete_activity(current_scope(), aid)
    return jsonify({"message": "Activity deleted (soft)"})


# ---------- Activity assignments: roster & bulk ledgers ----------
@teacher_bp.route("/assignments/<int:aa_id>/students")
@login_required
def assignment_students(aa_id):
    rows = assignment_roster(current_scope(), current_year(), aa_id)
    out = []
    for r in rows:
        st, att, pay = r["student"], r["attendance"], r["payment"]
        out.append({
            "student_id": st.id,
            "first_name": st.first_name,
            "last_name": st.last_name,
            "lrn": st.lrn,
            "attendance_status": att.status.value if att else None,
            "parent_present": bool(att.parent_present) if att else False,
            "paid": bool(pay.paid) if pay else False,
            "amount": _money(pay.amount) if pay else "0.00",
            "payment_date": pay.payment_date.isoformat() if pay and pay.payment_date else None,
            "contribution_count": r["contribution_count"],
            "contribution_value": _money(r["contribution_value"]),
            "contribution_hours": _money(r["contribution_hours"]),
        })
    return jsonify(out)


@teacher_bp.route("/assignments/<int:aa_id>/attendance", methods=["POST"])
@login_required
def assignment_attendance(aa_id):
    result = submit_attendance(current_scope(), current_year(), aa_id, _body().get("records"))
    return jsonify(result)


@teacher_bp.route("/assignments/<int:aa_id>/payments", methods=["POST"])
@login_required
def assignment_payments(aa_id):
    result = submit_payments(current_scope(), current_year(), aa_id, _body().get("records"))
    return jsonify(result)


@teacher_bp.route("/assignments/<int:aa_id>/contributions", methods=["POST"])
@login_required
def assignment_contributions(aa_id):
    result = submit_contributions(current_scope(), current_year(), aa_id, _body().get("records"))
    return jsonify(result)
