"""
Error taxonomy for remote (Supabase / PostgREST) failures.

The stored procedures report failures as prose (``not_authorized``,
``event_not_found``, ``duplicate key value violates ...``). This module is the
only place that reads that prose: everything else works with ``ErrorKind``.
"""
import enum
import logging
from dataclasses import dataclass, field

from postgrest.exceptions import APIError

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    INVALID = "invalid"
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_AUTHORIZED = "not_authorized"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    SCHEMA_DRIFT = "schema_drift"
    DUPLICATE = "duplicate"
    INTERNAL = "internal"


STATUS_BY_KIND = {
    ErrorKind.INVALID: 400,
    ErrorKind.NOT_AUTHENTICATED: 401,
    ErrorKind.NOT_AUTHORIZED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.SCHEMA_DRIFT: 400,
    ErrorKind.DUPLICATE: 409,
    ErrorKind.INTERNAL: 500,
}


# --------------------------------------------------
# SIGNATURES
# --------------------------------------------------
SCHEMA_DRIFT_MARKERS = (
    "relation",
    "schema cache",
    "does not exist",
    "could not find the table",
    "column",
)

DUPLICATE_MARKERS = (
    "duplicate",
    "unique constraint",
    "already exists",
)

UNIQUE_VIOLATION_CODE = "23505"


def is_schema_drift(message: str | None) -> bool:
    text = (message or "").lower()
    return any(marker in text for marker in SCHEMA_DRIFT_MARKERS)


def is_duplicate(message: str | None, code: str | None = None) -> bool:
    if code == UNIQUE_VIOLATION_CODE:
        return True
    text = (message or "").lower()
    return any(marker in text for marker in DUPLICATE_MARKERS)


def is_missing_function(message: str | None) -> bool:
    """
    PostgREST reports an unknown RPC as "Could not find the function ..."
    and Postgres as "function ... does not exist".
    """
    text = (message or "").lower()
    return "function" in text


# --------------------------------------------------
# BACKEND ERROR
# --------------------------------------------------
class BackendError(Exception):
    """
    A remote failure that has been classified.

    ``detail`` is the raw backend text; it is shown to the caller unchanged.
    """

    def __init__(self, kind: ErrorKind, detail: str, code: str | None = None):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.code = code

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.detail, "kind": self.kind.value}


def kind_for_status(status_code: int) -> ErrorKind:
    for kind, status in STATUS_BY_KIND.items():
        if status == status_code:
            return kind
    return ErrorKind.INTERNAL if status_code >= 500 else ErrorKind.INVALID


def api_error_message(exc: APIError, fallback: str = "Request failed.") -> str:
    return getattr(exc, "message", None) or fallback


# --------------------------------------------------
# TAXONOMY
# --------------------------------------------------
@dataclass(frozen=True)
class ErrorTaxonomy:
    """
    Ordered ``(signature, kind)`` rules; the first signature contained in the
    message wins, otherwise ``default``.
    """

    rules: tuple = field(default_factory=tuple)
    default: ErrorKind = ErrorKind.INVALID

    def classify(self, message: str | None) -> ErrorKind:
        text = message or ""
        for signature, kind in self.rules:
            if signature in text:
                return kind
        return self.default

    def status_for(self, message: str | None) -> int:
        return STATUS_BY_KIND[self.classify(message)]

    def error(self, message: str | None, fallback: str = "Request failed.",
              code: str | None = None) -> BackendError:
        detail = message or fallback
        return BackendError(self.classify(detail), detail, code=code)

    def from_api_error(self, exc: APIError, fallback: str = "Request failed.") -> BackendError:
        return self.error(api_error_message(exc, fallback), fallback, code=getattr(exc, "code", None))


def taxonomy(*rules, default: ErrorKind = ErrorKind.INVALID) -> ErrorTaxonomy:
    return ErrorTaxonomy(rules=tuple(rules), default=default)


AUTH_RULES = (
    ("not_authenticated", ErrorKind.NOT_AUTHENTICATED),
    ("not_authorized", ErrorKind.NOT_AUTHORIZED),
)

# Routes that forward the backend text as a plain 400.
PASSTHROUGH = taxonomy(default=ErrorKind.INVALID)

# Drift-aware default used by the compatibility layer.
GENERIC = taxonomy(
    *AUTH_RULES,
    ("_not_found", ErrorKind.NOT_FOUND),
    ("rate_limit", ErrorKind.RATE_LIMITED),
    ("duplicate key", ErrorKind.DUPLICATE),
    default=ErrorKind.INVALID,
)

CREATE_EVENT_ERRORS = taxonomy(
    *AUTH_RULES,
    ("title_required", ErrorKind.INVALID),
    ("location_required", ErrorKind.INVALID),
    ("invalid_event_window", ErrorKind.INVALID),
    ("invalid_visibility", ErrorKind.INVALID),
    ("invalid_status", ErrorKind.INVALID),
    ("invalid_capacity", ErrorKind.INVALID),
    ("invalid_cover_url", ErrorKind.INVALID),
    ("invalid_cover_format", ErrorKind.INVALID),
    ("too_many_styles", ErrorKind.INVALID),
    ("active_event_limit_reached", ErrorKind.CONFLICT),
    default=ErrorKind.INTERNAL,
)

UPDATE_EVENT_ERRORS = taxonomy(
    *AUTH_RULES,
    ("event_not_found", ErrorKind.NOT_FOUND),
    ("edit_rate_limit_daily", ErrorKind.RATE_LIMITED),
    ("title_required", ErrorKind.INVALID),
    ("invalid_event_window", ErrorKind.INVALID),
    ("invalid_visibility", ErrorKind.INVALID),
    ("invalid_status", ErrorKind.INVALID),
    ("invalid_capacity", ErrorKind.INVALID),
    ("invalid_cover_url", ErrorKind.INVALID),
    ("invalid_cover_format", ErrorKind.INVALID),
    ("too_many_styles", ErrorKind.INVALID),
    default=ErrorKind.INTERNAL,
)

EVENT_REPORT_ERRORS = taxonomy(
    ("not_authenticated", ErrorKind.NOT_AUTHENTICATED),
    ("event_not_found", ErrorKind.NOT_FOUND),
    ("cannot_report_own_event", ErrorKind.CONFLICT),
    ("report_reason_required", ErrorKind.INVALID),
    ("ux_event_reports_open_unique", ErrorKind.CONFLICT),
    ("duplicate key", ErrorKind.CONFLICT),
    default=ErrorKind.INVALID,
)

EVENT_JOIN_ERRORS = taxonomy(
    *AUTH_RULES,
    ("event_not_found", ErrorKind.NOT_FOUND),
    ("membership_not_found", ErrorKind.NOT_FOUND),
    ("email_verification_required_for_join", ErrorKind.RATE_LIMITED),
    ("new_account_join_limit_reached", ErrorKind.RATE_LIMITED),
    ("private_event_requires_request", ErrorKind.CONFLICT),
    ("event_is_public", ErrorKind.CONFLICT),
    ("event_not_open", ErrorKind.CONFLICT),
    ("event_hidden", ErrorKind.CONFLICT),
    ("already_joined_or_waitlisted", ErrorKind.CONFLICT),
    ("request_not_found_or_not_pending", ErrorKind.CONFLICT),
    ("host_cannot_leave_own_event", ErrorKind.CONFLICT),
    default=ErrorKind.INVALID,
)

EVENT_RESPOND_ERRORS = taxonomy(
    *AUTH_RULES,
    ("event_not_found", ErrorKind.NOT_FOUND),
    ("request_not_found", ErrorKind.NOT_FOUND),
    ("request_not_pending", ErrorKind.CONFLICT),
    ("invalid_action", ErrorKind.CONFLICT),
    ("event_hidden", ErrorKind.CONFLICT),
    default=ErrorKind.INVALID,
)

FEEDBACK_ERRORS = taxonomy(
    ("not_authenticated", ErrorKind.NOT_AUTHENTICATED),
    ("event_not_found", ErrorKind.NOT_FOUND),
    ("event_feedback_not_allowed", ErrorKind.NOT_AUTHORIZED),
    ("invalid_quality", ErrorKind.INVALID),
    ("invalid_visibility", ErrorKind.INVALID),
    ("feedback_note_too_long", ErrorKind.INVALID),
    ("feedback_locked_after_15_days", ErrorKind.CONFLICT),
    default=ErrorKind.INTERNAL,
)

MODERATE_EVENT_ERRORS = taxonomy(
    *AUTH_RULES,
    ("event_not_found", ErrorKind.NOT_FOUND),
    ("invalid_action", ErrorKind.CONFLICT),
    ("event_cover_missing", ErrorKind.CONFLICT),
    default=ErrorKind.INVALID,
)

MODERATE_REPORT_ERRORS = taxonomy(
    *AUTH_RULES,
    ("report_not_found", ErrorKind.NOT_FOUND),
    default=ErrorKind.INVALID,
)

EVENT_REQUESTS_ERRORS = taxonomy(
    *AUTH_RULES,
    ("request_not_found", ErrorKind.NOT_FOUND),
    ("event_not_found", ErrorKind.NOT_FOUND),
    ("request_not_pending", ErrorKind.CONFLICT),
    ("invalid_action", ErrorKind.CONFLICT),
    ("event_hidden", ErrorKind.CONFLICT),
    default=ErrorKind.INVALID,
)

TRIP_REQUEST_ERRORS = taxonomy(
    *AUTH_RULES,
    ("request_not_found", ErrorKind.NOT_FOUND),
    ("trip_not_found", ErrorKind.NOT_FOUND),
    ("request_not_pending", ErrorKind.CONFLICT),
    default=ErrorKind.INVALID,
)

MESSAGE_ERRORS = taxonomy(
    *AUTH_RULES,
    ("daily_limit_reached", ErrorKind.RATE_LIMITED),
    ("daily limit", ErrorKind.RATE_LIMITED),
    ("Daily limit", ErrorKind.RATE_LIMITED),
    ("rate limit", ErrorKind.RATE_LIMITED),
    ("connection_not_found", ErrorKind.NOT_FOUND),
    ("not_accepted", ErrorKind.CONFLICT),
    default=ErrorKind.INVALID,
)


# --------------------------------------------------
# FALLBACK PREDICATES
# --------------------------------------------------
TRIP_FALLBACK_MARKERS = (
    "function",
    "column",
    "decided_by",
    "decided_at",
    "schema cache",
    "on conflict",
)

REFERENCE_COMPAT_MARKERS = (
    "function",
    "create_reference_v2",
    "create_reference(",
    "schema cache",
    "column",
    "null value in column",
    '"sync_id"',
    "does not exist",
)


def should_fallback_trip_rpc(message: str | None) -> bool:
    text = (message or "").lower()
    return any(marker in text for marker in TRIP_FALLBACK_MARKERS)


def should_fallback_sync_completion(message: str | None) -> bool:
    text = (message or "").lower()
    return "function" in text or "complete_connection_sync" in text


def should_use_reference_compat(message: str | None) -> bool:
    text = (message or "").lower()
    return any(marker in text for marker in REFERENCE_COMPAT_MARKERS)


def should_fallback_sync_rpc(message: str | None) -> bool:
    text = (message or "").lower()
    return any(marker in text for marker in ("function", "schema cache", "relation", "column", "policy"))


def is_unavailable(message: str | None) -> bool:
    """The procedure or the table shape it needs is missing."""
    return is_missing_function(message) or is_schema_drift(message)
