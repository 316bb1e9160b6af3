# errors.py
import logging

from flask import jsonify

log = logging.getLogger(__name__)


class RosterError(Exception):
    """Base for every failure the roster services report to a caller."""
    status_code = 500

    def __init__(self, message: str, payload: dict | None = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self) -> dict:
        body = dict(self.payload)
        body["message"] = self.message
        return body


class ConfigurationError(RosterError):
    """A precondition of the whole system is missing (e.g. no current school year)."""
    status_code = 500


class ValidationError(RosterError):
    status_code = 400


class Conflict(RosterError):
    status_code = 409


class Forbidden(RosterError):
    """The entity exists but lies outside the caller's scope."""
    status_code = 403


class NotFound(RosterError):
    status_code = 404


def register_error_handlers(app):
    @app.errorhandler(RosterError)
    def handle_roster_error(err: RosterError):
        if isinstance(err, ConfigurationError):
            log.warning("configuration error: %s", err.message)
        else:
            log.info("%s: %s", type(err).__name__, err.message)
        return jsonify(err.to_dict()), err.status_code
