"""Collapsing the rows between two users into one connection state."""
import pytest

from conxion.core.connection_state import (
    NO_CONNECTION,
    derive_connection_state,
    get_other_user_id,
    is_blocked_connection,
    is_incoming_pending_connection,
    is_outgoing_pending_connection,
    is_visible_accepted_connection,
)
from conxion.core.read_model import (
    accepted_connection_index,
    fetch_visible_connections,
    normalize_fallback_row,
)
from conxion.core.errors import BackendError
from tests.conftest import ME, OTHER, THIRD, api_error


def _row(id, requester, target, status, **extra):
    return {"id": id, "requester_id": requester, "target_id": target, "status": status, **extra}


class TestDeriveConnectionState:

    def test_no_rows_is_none(self):
        assert derive_connection_state([], ME, OTHER) == NO_CONNECTION
        assert derive_connection_state([], ME, OTHER).to_dict() == {"status": "none"}

    def test_rows_for_other_pairs_are_ignored(self):
        rows = [_row("c1", ME, THIRD, "accepted"), _row("c2", THIRD, OTHER, "blocked")]
        assert derive_connection_state(rows, ME, OTHER).status == "none"

    def test_blocked_wins_over_accepted(self):
        rows = [_row("c1", ME, OTHER, "accepted"), _row("c2", OTHER, ME, "blocked")]
        state = derive_connection_state(rows, ME, OTHER)
        assert state.to_dict() == {"status": "blocked", "id": "c2"}

    def test_blocked_by_marker_on_accepted_row(self):
        rows = [_row("c1", ME, OTHER, "accepted", blocked_by=OTHER)]
        assert derive_connection_state(rows, ME, OTHER).status == "blocked"

    def test_accepted_wins_over_stale_pending(self):
        rows = [_row("old", OTHER, ME, "pending"), _row("new", ME, OTHER, "accepted")]
        state = derive_connection_state(rows, ME, OTHER)
        assert state.status == "accepted"
        assert state.id == "new"
        assert state.role is None

    def test_incoming_pending_is_target_role(self):
        state = derive_connection_state([_row("c1", OTHER, ME, "pending")], ME, OTHER)
        assert state.to_dict() == {"status": "pending", "role": "target", "id": "c1"}

    def test_outgoing_pending_is_requester_role(self):
        state = derive_connection_state([_row("c1", ME, OTHER, "pending")], ME, OTHER)
        assert state.to_dict() == {"status": "pending", "role": "requester", "id": "c1"}

    def test_incoming_wins_over_outgoing(self):
        rows = [_row("out", ME, OTHER, "pending"), _row("in", OTHER, ME, "pending")]
        assert derive_connection_state(rows, ME, OTHER).role == "target"

    def test_declined_rows_resolve_to_none(self):
        rows = [_row("c1", ME, OTHER, "declined"), _row("c2", OTHER, ME, "cancelled")]
        assert derive_connection_state(rows, ME, OTHER) == NO_CONNECTION


class TestRowPredicates:

    def test_other_user_id(self):
        row = _row("c1", ME, OTHER, "accepted")
        assert get_other_user_id(row, ME) == OTHER
        assert get_other_user_id(row, OTHER) == ME
        assert get_other_user_id(row, THIRD) == ""

    def test_visibility_flags(self):
        accepted = _row("c1", ME, OTHER, "accepted")
        blocked = _row("c2", ME, OTHER, "accepted", blocked_by=ME)
        incoming = _row("c3", OTHER, ME, "pending")

        assert is_visible_accepted_connection(accepted, ME)
        assert not is_visible_accepted_connection(accepted, THIRD)
        assert is_blocked_connection(blocked)
        assert not is_visible_accepted_connection(blocked, ME)
        assert is_incoming_pending_connection(incoming, ME)
        assert is_outgoing_pending_connection(incoming, OTHER)
        assert not is_outgoing_pending_connection(incoming, ME)


class TestVisibleConnections:

    def test_rpc_rows_are_normalized(self, supabase):
        supabase.on_rpc("app_visible_connections", [{
            "id": "c1",
            "requester_id": ME,
            "target_id": OTHER,
            "status": "accepted",
            "other_user_id": OTHER,
            "is_accepted_visible": True,
            "connect_context": "festival",
            "trip_id": 42,
        }])

        rows = fetch_visible_connections(supabase, ME)

        assert len(rows) == 1
        assert rows[0]["is_accepted_visible"] is True
        assert rows[0]["is_blocked"] is False
        # Unknown contexts and non-string fields are dropped
        assert rows[0]["connect_context"] is None
        assert rows[0]["trip_id"] is None

    def test_falls_back_to_table_when_rpc_missing(self, supabase):
        supabase.seed(
            "connections",
            _row("c1", ME, OTHER, "accepted"),
            _row("c2", THIRD, ME, "pending"),
            _row("c3", OTHER, THIRD, "accepted"),
        )

        rows = fetch_visible_connections(supabase, ME)

        assert {row["id"] for row in rows} == {"c1", "c2"}
        by_id = {row["id"]: row for row in rows}
        assert by_id["c1"]["other_user_id"] == OTHER
        assert by_id["c2"]["is_incoming_pending"] is True
        assert accepted_connection_index(rows) == {OTHER: "c1"}

    def test_fallback_row_blocked_marker(self):
        row = normalize_fallback_row(_row("c1", ME, OTHER, "accepted", blocked_by=OTHER), ME)
        assert row["is_blocked"] is True
        assert row["is_accepted_visible"] is False
        assert row["is_visible_in_messages"] is False

    def test_rpc_error_then_table_error_raises(self, supabase):
        supabase.on_rpc("app_visible_connections", api_error("permission denied for function"))
        supabase.fail("connections", "select", api_error("permission denied for table connections"))

        with pytest.raises(BackendError, match="permission denied"):
            fetch_visible_connections(supabase, ME)
