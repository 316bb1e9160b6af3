# admin.py
from flask import Blueprint, request, jsonify
from flask_login import current_user

from auth import user_json
from errors import Forbidden
from models import Role, SchoolYear
from school_year import create_year, set_current_year
from scope import current_scope, current_year
from sections import create_grade, create_section, delete_section, update_section
from teacher_sections import (
    assign, create_teacher, deactivate_teacher, reassign, unassign_all, update_teacher,
)
from utils import parse_bool, parse_id, require_date, require_fields

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


# ---------- Access control ----------
@admin_bp.before_request
def require_admin():
    """Every admin endpoint needs a logged-in admin."""
    if not current_user.is_authenticated:
        return jsonify({"message": "Not authenticated"}), 401
    if current_user.role != Role.ADMIN:
        raise Forbidden("Admins only")


def _body() -> dict:
    return request.get_json(silent=True) or {}


def year_json(sy: SchoolYear) -> dict:
    return {
        "id": sy.id,
        "name": sy.name,
        "start_date": sy.start_date.isoformat(),
        "end_date": sy.end_date.isoformat(),
        "is_current": bool(sy.is_current),
    }


def section_json(s) -> dict:
    return {"id": s.id, "grade_id": s.grade_id, "name": s.name, "is_deleted": bool(s.is_deleted)}


def assignment_json(row) -> dict:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "section_id": row.section_id,
        "school_year_id": row.school_year_id,
    }


# ---------- School Years ----------
@admin_bp.route("/years")
def years_list():
    rows = SchoolYear.query.order_by(SchoolYear.start_date).all()
    return jsonify([year_json(r) for r in rows])


@admin_bp.route("/years", methods=["POST"])
def years_new():
    data = _body()
    require_fields(data, "name", "start_date", "end_date")
    sy = create_year(
        data["name"],
        require_date(data["start_date"], "start_date"),
        require_date(data["end_date"], "end_date"),
        is_current=parse_bool(data.get("is_current")),
    )
    return jsonify(year_json(sy)), 201


@admin_bp.route("/years/<int:yid>/current", methods=["POST"])
def years_set_current(yid):
    return jsonify(year_json(set_current_year(yid)))


# ---------- Grades & Sections ----------
@admin_bp.route("/grades", methods=["POST"])
def grades_new():
    g = create_grade(current_scope(), _body().get("name"))
    return jsonify({"id": g.id, "name": g.name}), 201


@admin_bp.route("/sections", methods=["POST"])
def sections_new():
    data = _body()
    require_fields(data, "grade_id", "name")
    s = create_section(current_scope(), parse_id(data["grade_id"], "grade_id"), data["name"])
    return jsonify(section_json(s)), 201


@admin_bp.route("/sections/<int:sid>", methods=["PUT"])
def sections_edit(sid):
    data = _body()
    require_fields(data, "grade_id", "name")
    s = update_section(current_scope(), sid, parse_id(data["grade_id"], "grade_id"), data["name"])
    return jsonify(section_json(s))


@admin_bp.route("/sections/<int:sid>", methods=["DELETE"])
def sections_delete(sid):
    delete_section(current_scope(), sid)
    return jsonify({"message": "Section deleted (soft)"})


# ---------- Teachers ----------
@admin_bp.route("/teachers", methods=["POST"])
def teachers_new():
    u = create_teacher(current_scope(), current_year(), _body())
    return jsonify(user_json(u)), 201


@admin_bp.route("/teachers/<int:tid>", methods=["PUT"])
def teachers_edit(tid):
    u = update_teacher(current_scope(), current_year(), tid, _body())
    return jsonify(user_json(u))


@admin_bp.route("/teachers/<int:tid>", methods=["DELETE"])
def teachers_delete(tid):
    summary = deactivate_teacher(current_scope(), tid)
    return jsonify({"message": "Teacher deactivated", **summary})


# ---------- Teacher <-> Section ----------
def _section_and_year(data: dict):
    require_fields(data, "section_id")
    year_id = data.get("school_year_id")
    return (parse_id(data["section_id"], "section_id"),
            parse_id(year_id, "school_year_id") if year_id else current_year().year_id)


@admin_bp.route("/teachers/<int:tid>/sections", methods=["POST"])
def teacher_assign(tid):
    section_id, year_id = _section_and_year(_body())
    row = assign(current_scope(), tid, section_id, year_id)
    return jsonify(assignment_json(row)), 201


@admin_bp.route("/teachers/<int:tid>/sections", methods=["PUT"])
def teacher_reassign(tid):
    section_id, year_id = _section_and_year(_body())
    row = reassign(current_scope(), tid, section_id, year_id)
    return jsonify(assignment_json(row))


@admin_bp.route("/teachers/<int:tid>/sections", methods=["DELETE"])
def teacher_unassign(tid):
    summary = unassign_all(current_scope(), tid)
    return jsonify({"message": "Teacher unassigned", **summary})
