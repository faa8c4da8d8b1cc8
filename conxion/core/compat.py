"""
Schema-compatibility helpers.

The remote schema moves ahead of (or behind) this service across
environments. Queries are expressed as ordered lists of named projections,
richest first; a schema-drift error moves on to the next one, anything else
is a hard failure.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from postgrest.exceptions import APIError

from conxion.core.errors import (
    GENERIC,
    BackendError,
    ErrorKind,
    ErrorTaxonomy,
    api_error_message,
    is_duplicate,
    is_schema_drift,
)

logger = logging.getLogger(__name__)

MAX_SWAP_ATTEMPTS = 8


# --------------------------------------------------
# PROJECTIONS
# --------------------------------------------------
@dataclass(frozen=True)
class Projection:
    name: str
    table: str
    columns: str = "*"


@dataclass
class FallbackResult:
    projection: Optional[Projection]
    rows: list = field(default_factory=list)

    @property
    def drifted(self) -> bool:
        return self.projection is None


def query_with_fallback(
    projections: Sequence[Projection],
    run: Callable[[Projection], Any],
    *,
    optional: bool = False,
    errors: ErrorTaxonomy = GENERIC,
) -> FallbackResult:
    """
    Run ``run(projection)`` for each projection until one succeeds.

    When every projection hits schema drift an optional query yields an empty
    result, a required one raises ``SCHEMA_DRIFT``.
    """
    last_message = "schema_drift"
    for projection in projections:
        try:
            rows = run(projection)
        except APIError as exc:
            message = api_error_message(exc)
            if not is_schema_drift(message):
                raise errors.from_api_error(exc)
            logger.info("Projection %s on %s drifted: %s", projection.name, projection.table, message)
            last_message = message
            continue
        return FallbackResult(projection=projection, rows=list(rows or []))

    if optional:
        return FallbackResult(projection=None, rows=[])
    raise BackendError(ErrorKind.SCHEMA_DRIFT, last_message)


def select_rows(client, projection: Projection, apply: Callable[[Any], Any] | None = None) -> list:
    query = client.table(projection.table).select(projection.columns)
    if apply is not None:
        query = apply(query)
    res = query.execute()
    return list(res.data or [])


# --------------------------------------------------
# ORDERED STEPS (RPC → LEGACY RPC → TABLE WRITE)
# --------------------------------------------------
@dataclass(frozen=True)
class Step:
    name: str
    call: Callable[[], Any]
    advance: Callable[[str], bool] = is_schema_drift


@dataclass
class StepResult:
    name: str
    data: Any


def rpc_with_fallback(steps: Sequence[Step], *, errors: ErrorTaxonomy = GENERIC) -> StepResult:
    """
    Try each step in order. A failing step hands over to the next one only
    when its ``advance`` predicate accepts the error message; the last step's
    error is always raised.
    """
    for index, step in enumerate(steps):
        is_last = index == len(steps) - 1
        try:
            return StepResult(name=step.name, data=step.call())
        except APIError as exc:
            message = api_error_message(exc)
            if is_last or not step.advance(message):
                raise errors.from_api_error(exc)
            logger.info("Step %s unavailable, falling back: %s", step.name, message)
        except BackendError as exc:
            if is_last or not step.advance(exc.detail):
                raise
            logger.info("Step %s unavailable, falling back: %s", step.name, exc.detail)
    raise BackendError(ErrorKind.INTERNAL, "No steps to run.")


def call_rpc(client, name: str, params: dict | None = None, *, errors: ErrorTaxonomy = GENERIC) -> Any:
    try:
        return client.rpc(name, params or {}).execute().data
    except APIError as exc:
        logger.info("RPC %s failed: %s", name, api_error_message(exc))
        raise errors.from_api_error(exc)


# --------------------------------------------------
# INSERTS
# --------------------------------------------------
@dataclass
class InsertOutcome:
    inserted: bool
    rows: list = field(default_factory=list)
    skipped: bool = False

    @property
    def first_id(self) -> Optional[str]:
        for row in self.rows:
            if isinstance(row, dict) and isinstance(row.get("id"), str):
                return row["id"]
        return None


def insert_idempotent(
    client,
    table: str,
    payload: dict,
    *,
    tolerate_drift: bool = False,
    errors: ErrorTaxonomy = GENERIC,
) -> InsertOutcome:
    """
    Insert a row; a duplicate for the same logical row is a benign race and
    counts as success.
    """
    try:
        res = client.table(table).insert(payload).execute()
    except APIError as exc:
        message = api_error_message(exc)
        if is_duplicate(message, getattr(exc, "code", None)):
            logger.info("Duplicate insert into %s treated as success", table)
            return InsertOutcome(inserted=False)
        if tolerate_drift and is_schema_drift(message):
            logger.info("Skipping insert into %s, schema drift: %s", table, message)
            return InsertOutcome(inserted=False, skipped=True)
        raise errors.from_api_error(exc)
    return InsertOutcome(inserted=True, rows=list(res.data or []))


_MISSING_COLUMN_PATTERNS = (
    re.compile(r"could not find the '([^']+)' column", re.IGNORECASE),
    re.compile(r'column "([^"]+)" does not exist', re.IGNORECASE),
)
_NULL_COLUMN_PATTERN = re.compile(r'null value in column "([^"]+)"', re.IGNORECASE)


def extract_missing_column(message: str | None) -> str:
    for pattern in _MISSING_COLUMN_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return match.group(1)
    return ""


def extract_null_column(message: str | None) -> str:
    match = _NULL_COLUMN_PATTERN.search(message or "")
    return match.group(1) if match else ""


def swap_column(payload: dict, column: str, swaps: dict) -> bool:
    """
    Apply the swap registered for a missing column. A ``None`` target drops
    the column, a string target moves its value under the new name and a
    ``(name, convert)`` pair moves it through ``convert``. A target that
    already holds a value keeps it.
    """
    key = column.strip().lower()
    if key not in swaps or key not in payload:
        return False
    value = payload.pop(key)
    target = swaps[key]
    if isinstance(target, tuple):
        target, convert = target
        value = convert(value)
    if target is not None and payload.get(target) is None:
        payload[target] = value
    return True


def insert_with_column_swaps(
    client,
    table: str,
    candidates: Sequence[dict],
    *,
    swaps: dict,
    fill: Callable[[str], Any],
    duplicate_ok: bool = True,
    errors: ErrorTaxonomy = GENERIC,
) -> InsertOutcome:
    """
    Insert the first payload candidate the remote table accepts.

    Missing columns are swapped (dropped or renamed), ``NOT NULL`` columns we
    know how to fill are filled. Duplicates count as success unless
    ``duplicate_ok`` is off, in which case they raise ``DUPLICATE``.
    """
    last_message = ""
    for candidate in candidates:
        payload = dict(candidate)
        for _ in range(MAX_SWAP_ATTEMPTS):
            try:
                res = client.table(table).insert(payload).execute()
                return InsertOutcome(inserted=True, rows=list(res.data or []))
            except APIError as exc:
                message = api_error_message(exc)
                last_message = message
                if is_duplicate(message, getattr(exc, "code", None)):
                    if not duplicate_ok:
                        raise BackendError(ErrorKind.DUPLICATE, message, code=getattr(exc, "code", None))
                    return InsertOutcome(inserted=False)

                missing = extract_missing_column(message)
                if missing and swap_column(payload, missing, swaps):
                    continue

                null_column = extract_null_column(message)
                if null_column:
                    value = fill(null_column)
                    if value is not None and payload.get(null_column) != value:
                        payload[null_column] = value
                        continue

                if not is_schema_drift(message):
                    raise errors.error(message)
                break

    raise BackendError(ErrorKind.SCHEMA_DRIFT, last_message or f"{table}_insert_failed")
