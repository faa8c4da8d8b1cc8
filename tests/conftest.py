"""Pytest fixtures: an in-memory Supabase stand-in, signed test tokens and an isolated draft database."""
import copy
import itertools
import os

# Settings are read at import time, so configure the environment first.
os.environ["SUPABASE_JWT_SECRET"] = "test-secret"
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_ANON_KEY"] = ""
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = ""
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from postgrest.exceptions import APIError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from conxion.auth.supabase_auth import get_user_supabase, get_viewer_supabase
from conxion.config import settings
from conxion.database import Base, get_db
from conxion.main import app
from conxion.supabase_client import get_optional_service_supabase, get_service_supabase

# Import models so they register with Base.metadata
from conxion.models.onboarding_draft import OnboardingDraftRecord  # noqa: F401

ME = "00000000-0000-4000-8000-000000000001"
OTHER = "00000000-0000-4000-8000-000000000002"
THIRD = "00000000-0000-4000-8000-000000000003"


# ---------------------------------------------------------------------------
# Errors shaped like the ones PostgREST returns
# ---------------------------------------------------------------------------
def api_error(message: str, code: str = "") -> APIError:
    return APIError({"message": message, "code": code, "hint": None, "details": None})


def missing_function(name: str) -> APIError:
    return api_error(f"Could not find the function public.{name} without parameters in the schema cache", "PGRST202")


def missing_relation(table: str) -> APIError:
    return api_error(f'relation "public.{table}" does not exist', "42P01")


def missing_select_column(table: str, column: str) -> APIError:
    return api_error(f"column {table}.{column} does not exist", "42703")


def missing_insert_column(table: str, column: str) -> APIError:
    return api_error(f"Could not find the '{column}' column of '{table}' in the schema cache", "PGRST204")


def duplicate_key(table: str) -> APIError:
    return api_error(f'duplicate key value violates unique constraint "{table}_unique"', "23505")


def not_null(table: str, column: str) -> APIError:
    return api_error(f'null value in column "{column}" of relation "{table}" violates not-null constraint', "23502")


# ---------------------------------------------------------------------------
# Filter expressions used with .or_()
# ---------------------------------------------------------------------------
def _split_top_level(text: str) -> list:
    parts, depth, current = [], 0, ""
    for char in text:
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current:
        parts.append(current)
    return parts


def _compile_term(term: str):
    term = term.strip()
    if term.startswith("and(") and term.endswith(")"):
        inner = [_compile_term(part) for part in _split_top_level(term[4:-1])]
        return lambda row: all(check(row) for check in inner)
    if term.startswith("or(") and term.endswith(")"):
        inner = [_compile_term(part) for part in _split_top_level(term[3:-1])]
        return lambda row: any(check(row) for check in inner)

    column, op, value = term.split(".", 2)
    if op == "eq":
        return lambda row: _text(row.get(column)) == value
    if op == "neq":
        return lambda row: _text(row.get(column)) != value
    if op == "is" and value == "null":
        return lambda row: row.get(column) is None
    raise ValueError(f"Unsupported filter term: {term}")


def _text(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _sort_key(value):
    return (value is None, value if value is not None else "")


class FakeResponse:
    def __init__(self, data):
        self.data = data


# ---------------------------------------------------------------------------
# Query builder
# ---------------------------------------------------------------------------
class FakeQuery:
    def __init__(self, client: "FakeSupabase", table: str):
        self.client = client
        self.table = table
        self.operation = "select"
        self.columns = "*"
        self.payload = None
        self.filters = []
        self.filter_columns = []
        self.ordering = []
        self.row_limit = None

    # operations
    def select(self, columns: str = "*", **_):
        self.operation = "select"
        self.columns = columns
        return self

    def insert(self, payload, **_):
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload, **_):
        self.operation = "update"
        self.payload = payload
        return self

    def delete(self, **_):
        self.operation = "delete"
        return self

    # filters
    def _add(self, column: str, check):
        self.filter_columns.append(column)
        self.filters.append(check)
        return self

    def eq(self, column, value):
        return self._add(column, lambda row: _text(row.get(column)) == _text(value))

    def neq(self, column, value):
        return self._add(column, lambda row: _text(row.get(column)) != _text(value))

    def in_(self, column, values):
        wanted = {_text(value) for value in values}
        return self._add(column, lambda row: _text(row.get(column)) in wanted)

    def gte(self, column, value):
        return self._add(column, lambda row: row.get(column) is not None and str(row.get(column)) >= str(value))

    def lte(self, column, value):
        return self._add(column, lambda row: row.get(column) is not None and str(row.get(column)) <= str(value))

    def is_(self, column, value):
        if value in (None, "null"):
            return self._add(column, lambda row: row.get(column) is None)
        return self._add(column, lambda row: _text(row.get(column)) == _text(value))

    def or_(self, expression: str, **_):
        checks = [_compile_term(part) for part in _split_top_level(expression)]
        return self._add("", lambda row: any(check(row) for check in checks))

    def order(self, column, desc: bool = False, **_):
        self.ordering.append((column, desc))
        return self

    def limit(self, count, **_):
        self.row_limit = count
        return self

    # execution
    def execute(self) -> FakeResponse:
        return self.client._execute(self)


class FakeRpc:
    def __init__(self, client: "FakeSupabase", name: str, params: dict):
        self.client = client
        self.name = name
        self.params = params

    def execute(self) -> FakeResponse:
        return self.client._call_rpc(self.name, self.params)


class FakeSupabase:
    """
    Enough of ``supabase.Client`` for the service: tables held as lists of
    dicts, optional column sets per table to simulate an older schema, unique
    keys, not-null columns, RPC handlers and injectable failures.
    """

    def __init__(self):
        self.tables = {}
        self.schema = {}
        self.unique = {}
        self.required = {}
        self.rpcs = {}
        self.failures = []
        self.rpc_calls = []
        self.writes = []
        self._ids = itertools.count(1)

    # setup helpers
    def seed(self, table: str, *rows, columns=None):
        self.tables.setdefault(table, []).extend(copy.deepcopy(list(rows)))
        if columns is not None:
            self.schema[table] = set(columns)
        return self

    def ensure_table(self, table: str, columns=None):
        return self.seed(table, columns=columns)

    def on_rpc(self, name: str, handler):
        self.rpcs[name] = handler
        return self

    def fail(self, table: str, operation: str, error: APIError, times: int | None = None):
        self.failures.append({"table": table, "operation": operation, "error": error, "times": times})
        return self

    def rows(self, table: str) -> list:
        return self.tables.get(table, [])

    def rpc_names(self) -> list:
        return [name for name, _ in self.rpc_calls]

    # client surface
    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict | None = None) -> FakeRpc:
        return FakeRpc(self, name, params or {})

    # internals
    def _injected(self, table: str, operation: str):
        for failure in self.failures:
            if failure["table"] == table and failure["operation"] in (operation, "*"):
                if failure["times"] is not None:
                    if failure["times"] <= 0:
                        continue
                    failure["times"] -= 1
                raise failure["error"]

    def _check_columns(self, table: str, columns, missing):
        known = self.schema.get(table)
        if known is None:
            return
        for column in columns:
            if column and column != "*" and column not in known:
                raise missing(table, column)

    def _execute(self, query: FakeQuery) -> FakeResponse:
        table = query.table
        self._injected(table, query.operation)
        if table not in self.tables and table not in self.schema:
            raise missing_relation(table)

        self._check_columns(table, query.filter_columns, missing_select_column)
        if query.operation == "select":
            requested = [part.strip() for part in query.columns.split(",")]
            self._check_columns(table, requested, missing_select_column)
            return FakeResponse(self._select(query, requested))
        if query.operation == "insert":
            return FakeResponse(self._insert(query))
        if query.operation == "update":
            self._check_columns(table, list(query.payload), missing_insert_column)
            matched = self._matching(query)
            for row in matched:
                row.update(copy.deepcopy(query.payload))
            self.writes.append(("update", table, dict(query.payload)))
            return FakeResponse(copy.deepcopy(matched))
        if query.operation == "delete":
            matched = self._matching(query)
            self.tables[table] = [row for row in self.rows(table) if row not in matched]
            self.writes.append(("delete", table, None))
            return FakeResponse(copy.deepcopy(matched))
        raise ValueError(query.operation)

    def _matching(self, query: FakeQuery) -> list:
        return [row for row in self.rows(query.table) if all(check(row) for check in query.filters)]

    def _select(self, query: FakeQuery, requested: list) -> list:
        rows = self._matching(query)
        for column, desc in reversed(query.ordering):
            rows = sorted(rows, key=lambda row: _sort_key(row.get(column)), reverse=desc)
        if query.row_limit is not None:
            rows = rows[: query.row_limit]
        if requested == ["*"]:
            return copy.deepcopy(rows)
        return [{column: copy.deepcopy(row.get(column)) for column in requested} for row in rows]

    def _insert(self, query: FakeQuery) -> list:
        table = query.table
        payloads = query.payload if isinstance(query.payload, list) else [query.payload]
        inserted = []
        for payload in payloads:
            self._check_columns(table, list(payload), missing_insert_column)
            for column in self.required.get(table, ()):
                if payload.get(column) is None:
                    raise not_null(table, column)
            for key in self.unique.get(table, ()):
                values = tuple(_text(payload.get(column)) for column in key)
                for row in self.rows(table):
                    if tuple(_text(row.get(column)) for column in key) == values:
                        raise duplicate_key(table)
            row = copy.deepcopy(payload)
            row.setdefault("id", f"{table}-{next(self._ids)}")
            self.tables.setdefault(table, []).append(row)
            self.writes.append(("insert", table, dict(payload)))
            inserted.append(copy.deepcopy(row))
        return inserted

    def _call_rpc(self, name: str, params: dict) -> FakeResponse:
        self.rpc_calls.append((name, dict(params)))
        if name not in self.rpcs:
            raise missing_function(name)
        handler = self.rpcs[name]
        if isinstance(handler, Exception):
            raise handler
        data = handler(params) if callable(handler) else handler
        return FakeResponse(data)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
def token_for(user_id: str) -> str:
    return jwt.encode(
        {"sub": user_id, "aud": settings.JWT_AUDIENCE, "email": f"{user_id}@example.com"},
        settings.SUPABASE_JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def auth_headers(user_id: str = ME) -> dict:
    return {"Authorization": f"Bearer {token_for(user_id)}"}


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture(scope="function")
def db_engine():
    """A fresh in-memory SQLite engine for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(db_engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(supabase, db_engine):
    """TestClient with every Supabase client and the draft database replaced."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def _override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_user_supabase] = lambda: supabase
    app.dependency_overrides[get_viewer_supabase] = lambda: supabase
    app.dependency_overrides[get_service_supabase] = lambda: supabase
    app.dependency_overrides[get_optional_service_supabase] = lambda: supabase
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()
