# school_year.py
"""The "current" school year is the anchor for every year-scoped operation.

It is resolved once at the request boundary into a ``SchoolYearContext`` and
passed down explicitly, so flipping ``is_current`` mid-request cannot change
what an operation sees.
"""
import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy.exc import IntegrityError

from errors import ConfigurationError, Conflict, NotFound, ValidationError
from models import db, SchoolYear, transaction

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchoolYearContext:
    year_id: int
    name: str


def _current_rows():
    return (SchoolYear.query.filter(SchoolYear.is_current.is_(True))
            .order_by(SchoolYear.id.desc()).all())


def current_year_id() -> int:
    return resolve_current_year().year_id


def resolve_current_year() -> SchoolYearContext:
    rows = _current_rows()
    if not rows:
        raise ConfigurationError("No current school year set")
    if len(rows) > 1:
        log.warning("%d school years flagged current; using id=%s",
                    len(rows), rows[0].id)
    return SchoolYearContext(year_id=rows[0].id, name=rows[0].name)


def next_year_id(year_id: int) -> int | None:
    """The school year starting soonest after ``year_id`` starts."""
    cur = db.session.get(SchoolYear, year_id)
    if cur is None:
        return None
    nxt = (SchoolYear.query.filter(SchoolYear.start_date > cur.start_date)
           .order_by(SchoolYear.start_date.asc()).first())
    return nxt.id if nxt else None


def get_year(year_id: int) -> SchoolYear:
    sy = db.session.get(SchoolYear, year_id)
    if sy is None:
        raise NotFound(f"School year {year_id} not found")
    return sy


def _flag_current(year: SchoolYear):
    # clear first so the partial unique index never sees two flagged rows
    (SchoolYear.query.filter(SchoolYear.id != year.id, SchoolYear.is_current.is_(True))
     .update({"is_current": False}, synchronize_session="fetch"))
    db.session.flush()
    year.is_current = True


def create_year(name: str, start_date: date, end_date: date, is_current: bool = False) -> SchoolYear:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if end_date < start_date:
        raise ValidationError("end_date must be on/after start_date")
    if SchoolYear.query.filter_by(name=name).first():
        raise Conflict(f"School year {name!r} already exists")

    try:
        with transaction():
            sy = SchoolYear(name=name, start_date=start_date, end_date=end_date, is_current=False)
            db.session.add(sy)
            db.session.flush()
            if is_current:
                _flag_current(sy)
    except IntegrityError:
        raise Conflict(f"School year {name!r} already exists")
    log.info("created school year %s (id=%s, current=%s)", name, sy.id, is_current)
    return sy


def set_current_year(year_id: int) -> SchoolYear:
    sy = get_year(year_id)
    with transaction():
        _flag_current(sy)
    log.info("school year %s (id=%s) is now current", sy.name, sy.id)
    return sy
