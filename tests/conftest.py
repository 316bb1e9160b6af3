# tests/conftest.py
from datetime import date
from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from config import TestConfig
from models import (
    db, Grade, Parent, ParentLink, Role, SchoolYear, Section, Student, StudentEnrollment,
    TeacherSectionAssignment, User,
)
from school_year import SchoolYearContext
from scope import AdminScope, TeacherScope

PASSWORD = "secret123"


def _user(username, role):
    u = User(username=username, full_name=username.title(), email=f"{username}@school.test",
             role=role, password_hash=generate_password_hash(PASSWORD))
    db.session.add(u)
    return u


def _student(first, last, lrn, year, section):
    st = Student(first_name=first, last_name=last, lrn=lrn)
    db.session.add(st)
    db.session.flush()
    db.session.add(StudentEnrollment(student_id=st.id, school_year_id=year.id,
                                     grade_id=section.grade_id, section_id=section.id))
    return st


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def school(app):
    """Two years (the first current), two grades, three sections, one admin and two teachers.

    Teacher ``t`` holds 1-A and teacher ``u`` holds 1-B in the current year.
    """
    with app.app_context():
        y1 = SchoolYear(name="2024-2025", start_date=date(2024, 6, 1),
                        end_date=date(2025, 3, 31), is_current=True)
        y2 = SchoolYear(name="2025-2026", start_date=date(2025, 6, 1),
                        end_date=date(2026, 3, 31))
        g1, g2 = Grade(name="Grade 1"), Grade(name="Grade 2")
        db.session.add_all([y1, y2, g1, g2])
        db.session.flush()
        s1a = Section(grade_id=g1.id, name="A")
        s1b = Section(grade_id=g1.id, name="B")
        s2a = Section(grade_id=g2.id, name="A")
        db.session.add_all([s1a, s1b, s2a])
        admin = _user("admin", Role.ADMIN)
        t = _user("tina", Role.TEACHER)
        u = _user("uriel", Role.TEACHER)
        db.session.flush()
        db.session.add_all([
            TeacherSectionAssignment(user_id=t.id, section_id=s1a.id, school_year_id=y1.id),
            TeacherSectionAssignment(user_id=u.id, section_id=s1b.id, school_year_id=y1.id),
        ])
        ana = _student("Ana", "Cruz", "LRN-001", y1, s1a)
        ben = _student("Ben", "Diaz", "LRN-002", y1, s1a)
        cara = _student("Cara", "Evans", "LRN-003", y1, s1b)
        mom = Parent(first_name="Maria", last_name="Cruz", contact_info="0917")
        db.session.add(mom)
        db.session.flush()
        db.session.add(ParentLink(student_id=ana.id, parent_id=mom.id, relation="mother"))
        db.session.commit()

        return SimpleNamespace(
            y1=y1.id, y2=y2.id, g1=g1.id, g2=g2.id,
            s1a=s1a.id, s1b=s1b.id, s2a=s2a.id,
            admin=admin.id, t=t.id, u=u.id,
            ana=ana.id, ben=ben.id, cara=cara.id, mom=mom.id,
        )


@pytest.fixture
def ctx(app, school):
    """An app context plus the resolved current year, for calling services directly."""
    with app.app_context():
        yield SchoolYearContext(year_id=school.y1, name="2024-2025")


@pytest.fixture
def admin_scope(school):
    return AdminScope(user_id=school.admin, year_id=school.y1)


@pytest.fixture
def t_scope(school):
    return TeacherScope(user_id=school.t, year_id=school.y1, section_ids=frozenset({school.s1a}))


@pytest.fixture
def u_scope(school):
    return TeacherScope(user_id=school.u, year_id=school.y1, section_ids=frozenset({school.s1b}))


@pytest.fixture
def login(app):
    """Return a logged-in test client for ``username``."""
    def _login(username):
        c = app.test_client()
        resp = c.post("/auth/login", json={"username": username, "password": PASSWORD})
        assert resp.status_code == 200, resp.get_json()
        return c
    return _login
