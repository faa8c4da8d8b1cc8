"""Error classification and the schema-compatibility helpers."""
import pytest

from conxion.core.compat import (
    Projection,
    Step,
    extract_missing_column,
    extract_null_column,
    insert_idempotent,
    insert_with_column_swaps,
    query_with_fallback,
    rpc_with_fallback,
    select_rows,
    swap_column,
)
from conxion.core.errors import (
    FEEDBACK_ERRORS,
    GENERIC,
    MESSAGE_ERRORS,
    MODERATE_EVENT_ERRORS,
    BackendError,
    ErrorKind,
    is_duplicate,
    is_schema_drift,
    is_unavailable,
    kind_for_status,
    should_use_reference_compat,
)
from tests.conftest import api_error, duplicate_key, missing_function, missing_select_column


class TestErrorTaxonomy:

    def test_moderate_event_statuses(self):
        assert MODERATE_EVENT_ERRORS.status_for("not_authenticated") == 401
        assert MODERATE_EVENT_ERRORS.status_for("not_authorized") == 403
        assert MODERATE_EVENT_ERRORS.status_for("event_not_found") == 404
        assert MODERATE_EVENT_ERRORS.status_for("invalid_action") == 409
        assert MODERATE_EVENT_ERRORS.status_for("event_cover_missing") == 409
        assert MODERATE_EVENT_ERRORS.status_for("something else") == 400

    def test_feedback_defaults_to_internal(self):
        assert FEEDBACK_ERRORS.status_for("event_feedback_not_allowed") == 403
        assert FEEDBACK_ERRORS.status_for("feedback_locked_after_15_days") == 409
        assert FEEDBACK_ERRORS.status_for("boom") == 500

    def test_first_matching_rule_wins(self):
        # "not_authorized" comes before any more specific signature
        assert MODERATE_EVENT_ERRORS.classify("not_authorized: event_not_found") == ErrorKind.NOT_AUTHORIZED

    def test_message_rate_limits(self):
        assert MESSAGE_ERRORS.status_for("Daily limit reached (20/day)") == 429
        assert MESSAGE_ERRORS.status_for("connection_not_found") == 404

    def test_backend_error_envelope(self):
        err = GENERIC.from_api_error(api_error("trip_not_found"))
        assert err.status_code == 404
        assert err.to_dict() == {"ok": False, "error": "trip_not_found", "kind": "not_found"}

    def test_kind_for_status(self):
        assert kind_for_status(401) == ErrorKind.NOT_AUTHENTICATED
        assert kind_for_status(409) == ErrorKind.CONFLICT
        assert kind_for_status(418) == ErrorKind.INVALID
        assert kind_for_status(503) == ErrorKind.INTERNAL

    def test_signatures(self):
        assert is_schema_drift('relation "public.syncs" does not exist')
        assert is_schema_drift("Could not find the 'note' column of 'syncs' in the schema cache")
        assert not is_schema_drift("not_authorized")
        assert is_duplicate("whatever", "23505")
        assert is_duplicate("duplicate key value violates unique constraint")
        assert is_unavailable("Could not find the function public.x")
        assert should_use_reference_compat('null value in column "rating"')
        assert not should_use_reference_compat("not_authorized")


class TestQueryWithFallback:

    def test_first_projection_that_works_is_used(self, supabase):
        supabase.seed("profiles", {"user_id": "u1", "city": "Tallinn"}, columns={"user_id", "city"})
        projections = [
            Projection(name="rich", table="profiles", columns="user_id,city,verified"),
            Projection(name="basic", table="profiles", columns="user_id,city"),
        ]

        result = query_with_fallback(projections, lambda p: select_rows(supabase, p))

        assert result.projection.name == "basic"
        assert result.rows == [{"user_id": "u1", "city": "Tallinn"}]
        assert not result.drifted

    def test_all_drifted_optional_is_empty(self, supabase):
        result = query_with_fallback(
            [Projection(name="gone", table="missing_table")],
            lambda p: select_rows(supabase, p),
            optional=True,
        )
        assert result.drifted
        assert result.rows == []

    def test_all_drifted_required_raises(self, supabase):
        with pytest.raises(BackendError) as info:
            query_with_fallback([Projection(name="gone", table="missing_table")], lambda p: select_rows(supabase, p))
        assert info.value.kind == ErrorKind.SCHEMA_DRIFT

    def test_non_drift_error_is_not_retried(self, supabase):
        supabase.seed("profiles", {"user_id": "u1"})
        supabase.fail("profiles", "select", api_error("not_authorized"))
        calls = []

        def run(projection):
            calls.append(projection.name)
            return select_rows(supabase, projection)

        with pytest.raises(BackendError) as info:
            query_with_fallback(
                [Projection(name="a", table="profiles"), Projection(name="b", table="profiles")],
                run,
            )
        assert calls == ["a"]
        assert info.value.status_code == 403


class TestRpcWithFallback:

    def test_advances_on_accepted_error(self):
        def missing():
            raise missing_function("create_connection_request")

        result = rpc_with_fallback([Step("rpc", missing), Step("insert", lambda: "row-1")])
        assert result.name == "insert"
        assert result.data == "row-1"

    def test_stops_on_rejected_error(self):
        def denied():
            raise api_error("not_authorized")

        later = []
        with pytest.raises(BackendError) as info:
            rpc_with_fallback([Step("rpc", denied), Step("insert", lambda: later.append(1))])
        assert info.value.kind == ErrorKind.NOT_AUTHORIZED
        assert later == []

    def test_last_step_always_raises(self):
        def drifted():
            raise missing_select_column("syncs", "note")

        with pytest.raises(BackendError) as info:
            rpc_with_fallback([Step("only", drifted)])
        assert "does not exist" in info.value.detail

    def test_backend_errors_follow_advance_predicate(self):
        def drift():
            raise BackendError(ErrorKind.SCHEMA_DRIFT, "column x does not exist")

        result = rpc_with_fallback([Step("first", drift), Step("second", lambda: 7)])
        assert result.data == 7


class TestInserts:

    def test_duplicate_is_success(self, supabase):
        supabase.seed("syncs", {"id": "s1", "connection_id": "c1"})
        supabase.unique["syncs"] = [("connection_id",)]

        outcome = insert_idempotent(supabase, "syncs", {"connection_id": "c1"})

        assert outcome.inserted is False
        assert len(supabase.rows("syncs")) == 1

    def test_drift_tolerated_only_when_asked(self, supabase):
        with pytest.raises(BackendError):
            insert_idempotent(supabase, "syncs", {"connection_id": "c1"})

        outcome = insert_idempotent(supabase, "syncs", {"connection_id": "c1"}, tolerate_drift=True)
        assert outcome.skipped is True

    def test_column_swaps_and_fill(self, supabase):
        supabase.ensure_table("notes", columns={"id", "owner_id", "text", "kind"})
        supabase.required["notes"] = ["kind"]

        outcome = insert_with_column_swaps(
            supabase,
            "notes",
            [{"user_id": "u1", "body": "hello", "metadata": {}}],
            swaps={"user_id": "owner_id", "body": ("text", str.upper), "metadata": None},
            fill=lambda column: "general" if column == "kind" else None,
        )

        assert outcome.inserted is True
        assert supabase.rows("notes")[0] == {
            "id": outcome.first_id,
            "owner_id": "u1",
            "text": "HELLO",
            "kind": "general",
        }

    def test_duplicate_can_be_an_error(self, supabase):
        supabase.seed("notes", {"id": "n1", "owner_id": "u1"})
        supabase.unique["notes"] = [("owner_id",)]

        with pytest.raises(BackendError) as info:
            insert_with_column_swaps(
                supabase, "notes", [{"owner_id": "u1"}],
                swaps={}, fill=lambda column: None, duplicate_ok=False,
            )
        assert info.value.kind == ErrorKind.DUPLICATE

    def test_next_candidate_after_unknown_column(self, supabase):
        supabase.ensure_table("notes", columns={"id", "owner_id"})

        outcome = insert_with_column_swaps(
            supabase,
            "notes",
            [{"owner_id": "u1", "extra": 1}, {"owner_id": "u1"}],
            swaps={},
            fill=lambda column: None,
        )
        assert outcome.inserted is True
        assert supabase.rows("notes")[0]["owner_id"] == "u1"

    def test_message_parsing(self):
        assert extract_missing_column("Could not find the 'rating' column of 'references' in the schema cache") == "rating"
        assert extract_missing_column('column "sync_id" does not exist') == "sync_id"
        assert extract_null_column('null value in column "role" of relation "thread_participants"') == "role"
        assert duplicate_key("x").code == "23505"

    def test_swap_column(self):
        payload = {"sentiment": "positive"}
        assert swap_column(payload, "Sentiment", {"sentiment": ("rating", lambda v: 5)})
        assert payload == {"rating": 5}
        assert not swap_column(payload, "unknown", {})
