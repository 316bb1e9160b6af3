import logging
import os
from logging.handlers import RotatingFileHandler

import click
from flask import Flask, jsonify
from flask_login import LoginManager
from werkzeug.security import generate_password_hash

from models import db, Role, SchoolYear, User
from config import Config
from errors import register_error_handlers
from auth import auth_bp
from admin import admin_bp
from students import parents_bp, students_bp
from teacher import teacher_bp
from school_year import set_current_year


def configure_logging(app):
    # service modules log through their own module loggers; handlers live on the root
    root = logging.getLogger()
    level = app.config.get("LOG_LEVEL", "INFO")
    root.setLevel(level)
    app.logger.setLevel(level)
    if getattr(root, "_roster_configured", False):
        return

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s"))
    root.addHandler(console)

    log_dir = app.config.get("LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(os.path.join(log_dir, "app.log"),
                                           maxBytes=2_000_000, backupCount=5)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(funcName)s: %(message)s"))
        root.addHandler(file_handler)

    root._roster_configured = True


def create_app(config_object=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    # Ensure instance dir exists (for SQLite)
    os.makedirs(app.instance_path, exist_ok=True)

    configure_logging(app)

    # SQLAlchemy
    db.init_app(app)

    # Login
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"message": "Not authenticated"}), 401

    register_error_handlers(app)

    # Blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(students_bp)
    app.register_blueprint(parents_bp)
    app.register_blueprint(teacher_bp)

    # CLI: init-db, create admin, pick the current school year
    @app.cli.command("init-db")
    def init_db():
        db.create_all()
        print("Initialized the database.")

    @app.cli.command("create-admin")
    @click.option("--username", default="admin")
    @click.option("--password", default="nimda")
    def create_admin(username, password):
        if not User.query.filter_by(username=username).first():
            u = User(username=username, full_name="Administrator", role=Role.ADMIN,
                     password_hash=generate_password_hash(password))
            db.session.add(u)
            db.session.commit()
            print(f"Created admin user: {username}")
        else:
            print("Admin already exists.")

    @app.cli.command("set-current-year")
    @click.argument("name")
    def set_current_year_cmd(name):
        sy = SchoolYear.query.filter_by(name=name).first()
        if sy is None:
            raise click.ClickException(f"No school year named {name!r}")
        set_current_year(sy.id)
        print(f"{sy.name} is now the current school year.")

    app.logger.info("roster app created (db=%s)", app.config["SQLALCHEMY_DATABASE_URI"].split("://")[0])
    return app
