# students.py
from flask import Blueprint, request, jsonify
from flask_login import login_required

from enrollment import (
    create_student, delete_student, enroll, find_enrollment, get_student, linked_parents,
    promote, transfer, update_student,
)
from parents import create_parent, delete_parent, get_parent, parent_pupils, update_parent
from scope import current_scope, current_year
from utils import parse_id, require_fields

students_bp = Blueprint("students", __name__, url_prefix="/students")
parents_bp = Blueprint("parents", __name__, url_prefix="/parents")


def _body() -> dict:
    return request.get_json(silent=True) or {}


def enrollment_json(en) -> dict | None:
    if en is None:
        return None
    return {
        "id": en.id,
        "student_id": en.student_id,
        "school_year_id": en.school_year_id,
        "grade_id": en.grade_id,
        "section_id": en.section_id,
        "status": en.status.value,
        "enrolled_at": en.enrolled_at.isoformat() if en.enrolled_at else None,
    }


def student_json(st, year_id: int) -> dict:
    return {
        "id": st.id,
        "first_name": st.first_name,
        "last_name": st.last_name,
        "lrn": st.lrn,
        "picture_ref": st.picture_ref,
        "enrollment": enrollment_json(find_enrollment(st.id, year_id)),
        "parents": [
            {"id": p.id, "first_name": p.first_name, "last_name": p.last_name,
             "contact_info": p.contact_info, "relation": relation}
            for p, relation in linked_parents(st)
        ],
    }


@students_bp.route("", methods=["POST"])
@login_required
def student_new():
    ctx = current_year()
    st = create_student(current_scope(), ctx, _body())
    return jsonify(student_json(st, ctx.year_id)), 201


@students_bp.route("/<int:sid>")
@login_required
def student_detail(sid):
    ctx = current_year()
    st = get_student(current_scope(), ctx, sid)
    return jsonify(student_json(st, ctx.year_id))


@students_bp.route("/<int:sid>", methods=["PUT"])
@login_required
def student_edit(sid):
    ctx = current_year()
    st = update_student(current_scope(), ctx, sid, _body())
    return jsonify(student_json(st, ctx.year_id))


@students_bp.route("/<int:sid>", methods=["DELETE"])
@login_required
def student_delete(sid):
    delete_student(current_scope(), current_year(), sid)
    return jsonify({"message": "Student deleted (soft)"})


# ---------- Placement ----------
@students_bp.route("/<int:sid>/enroll", methods=["POST"])
@login_required
def student_enroll(sid):
    data = _body()
    require_fields(data, "grade_id", "section_id")
    year_id = data.get("school_year_id")
    en = enroll(
        current_scope(), sid,
        parse_id(year_id, "school_year_id") if year_id else current_year().year_id,
        parse_id(data["grade_id"], "grade_id"),
        parse_id(data["section_id"], "section_id"),
    )
    return jsonify(enrollment_json(en))


@students_bp.route("/<int:sid>/promote", methods=["POST"])
@login_required
def student_promote(sid):
    data = _body()
    require_fields(data, "to_grade_id", "to_section_id")
    to_year = data.get("to_school_year_id")
    from_year = data.get("from_school_year_id")
    previous, new = promote(
        current_scope(), current_year(), sid,
        parse_id(data["to_grade_id"], "to_grade_id"),
        parse_id(data["to_section_id"], "to_section_id"),
        to_year_id=parse_id(to_year, "to_school_year_id") if to_year else None,
        from_year_id=parse_id(from_year, "from_school_year_id") if from_year else None,
        mark_previous_as=data.get("mark_previous_as") or "promoted",
    )
    return jsonify({
        "message": "Student promoted",
        "previous": enrollment_json(previous),
        "enrollment": enrollment_json(new),
    })


@students_bp.route("/<int:sid>/transfer", methods=["POST"])
@login_required
def student_transfer(sid):
    data = _body()
    require_fields(data, "to_grade_id", "to_section_id")
    year_id = data.get("school_year_id")
    en = transfer(
        current_scope(), current_year(), sid,
        parse_id(data["to_grade_id"], "to_grade_id"),
        parse_id(data["to_section_id"], "to_section_id"),
        year_id=parse_id(year_id, "school_year_id") if year_id else None,
    )
    return jsonify({"message": "Student transferred", "enrollment": enrollment_json(en)})


# ---------- Parents ----------
def parent_json(p) -> dict:
    return {"id": p.id, "first_name": p.first_name, "last_name": p.last_name,
            "contact_info": p.contact_info}


def pupil_json(st, en) -> dict:
    return {"id": st.id, "first_name": st.first_name, "last_name": st.last_name, "lrn": st.lrn,
            "grade_id": en.grade_id, "section_id": en.section_id}


@parents_bp.route("", methods=["POST"])
@login_required
def parent_new():
    p = create_parent(current_scope(), _body())
    return jsonify(parent_json(p)), 201


@parents_bp.route("/pupils")
@login_required
def parent_pupils_lookup():
    raw = (request.args.get("parent_ids") or "").strip()
    year_id = request.args.get("school_year_id")
    mapping = parent_pupils(
        current_scope(), current_year(),
        [s.strip() for s in raw.split(",") if s.strip()],
        year_id=parse_id(year_id, "school_year_id") if year_id else None,
    )
    return jsonify({str(pid): [pupil_json(st, en) for st, en in pupils]
                    for pid, pupils in mapping.items()})


@parents_bp.route("/<int:pid>")
@login_required
def parent_detail(pid):
    ctx = current_year()
    scope = current_scope()
    p = get_parent(scope, ctx, pid)
    pupils = parent_pupils(scope, ctx, [p.id])[p.id]
    return jsonify(dict(parent_json(p), students=[pupil_json(st, en) for st, en in pupils]))


@parents_bp.route("/<int:pid>", methods=["PUT"])
@login_required
def parent_edit(pid):
    p = update_parent(current_scope(), current_year(), pid, _body())
    return jsonify(parent_json(p))


@parents_bp.route("/<int:pid>", methods=["DELETE"])
@login_required
def parent_delete(pid):
    delete_parent(current_scope(), current_year(), pid)
    return jsonify({"message": "Parent soft-deleted"})
