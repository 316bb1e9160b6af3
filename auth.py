# auth.py
from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user, login_user, logout_user
from werkzeug.security import check_password_hash, generate_password_hash

from errors import ValidationError
from models import Role, User, transaction

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def user_json(u: User) -> dict:
    return {
        "id": u.id,
        "username": u.username,
        "full_name": u.full_name,
        "email": u.email,
        "role": Role(u.role).value,
    }


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    user = User.active().filter_by(username=username).first()
    if user and check_password_hash(user.password_hash, password):
        login_user(user)
        return jsonify(user_json(user))
    # same answer for unknown user and wrong password
    return jsonify({"message": "Invalid username or password"}), 401


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out"})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify(user_json(current_user))


@auth_bp.route("/password", methods=["POST"])
@login_required
def change_password():
    data = request.get_json(silent=True) or {}
    cur = data.get("current") or ""
    new1 = data.get("new1") or ""
    new2 = data.get("new2") or ""
    if not check_password_hash(current_user.password_hash, cur):
        raise ValidationError("Current password is incorrect")
    if new1 != new2 or len(new1) < 6:
        raise ValidationError("New passwords must match and be at least 6 characters")
    with transaction():
        current_user.password_hash = generate_password_hash(new1)
    return jsonify({"message": "Password changed"})
