# compliance_api/common/errors.py
import logging

from flask import Blueprint
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError
from compliance_api.common.http import fail

log = logging.getLogger(__name__)

bp_errors = Blueprint("errors", __name__)


class APIError(Exception):
    """Raise from a view to return a structured error envelope."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


@bp_errors.app_errorhandler(APIError)
def _api_error(e: APIError):
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)


@bp_errors.app_errorhandler(HTTPException)
def _http(e: HTTPException):
    return fail(message=e.description or "HTTP error", status=e.code or 400)


@bp_errors.app_errorhandler(IntegrityError)
def _integrity(e: IntegrityError):
    # 409 for unique/FK violations
    return fail(message="Conflict / integrity error", status=409, code="CONSTRAINT_ERROR",
                detail=str(e.orig) if getattr(e, "orig", None) else str(e))


@bp_errors.app_errorhandler(Exception)
def _unhandled(e: Exception):
    log.exception("Unhandled error")
    return fail(message="Internal Server Error", status=500)
