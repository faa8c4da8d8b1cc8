import pytest

from conxion.core.errors import BackendError
from conxion.core.threads import (
    ensure_thread_participant,
    ensure_trip_thread,
    participant_payloads,
    resolve_trip_thread_id,
)
from tests.conftest import ME, OTHER, api_error, duplicate_key


class TestParticipants:

    def test_payload_shapes(self):
        with_read = participant_payloads("th1", ME, True)
        without_read = participant_payloads("th1", ME, False)

        assert [sorted(p) for p in with_read] == [
            ["last_read_at", "role", "thread_id", "user_id"],
            ["role", "thread_id", "user_id"],
            ["last_read_at", "thread_id", "user_id"],
            ["thread_id", "user_id"],
        ]
        assert [sorted(p) for p in without_read] == [["role", "thread_id", "user_id"], ["thread_id", "user_id"]]

    def test_older_table_gets_smaller_row(self, supabase):
        supabase.ensure_table("thread_participants", columns={"id", "thread_id", "user_id"})

        assert ensure_thread_participant(supabase, "th1", ME)
        row = supabase.rows("thread_participants")[0]
        assert (row["thread_id"], row["user_id"]) == ("th1", ME)
        assert "role" not in row

    def test_duplicate_counts_as_joined(self, supabase):
        supabase.ensure_table("thread_participants")
        supabase.fail("thread_participants", "insert", duplicate_key("thread_participants"))

        assert ensure_thread_participant(supabase, "th1", ME)

    def test_other_errors_raise(self, supabase):
        supabase.ensure_table("thread_participants")
        supabase.fail("thread_participants", "insert", api_error("permission denied"))

        with pytest.raises(BackendError, match="permission denied"):
            ensure_thread_participant(supabase, "th1", ME)


class TestTripThread:

    def test_existing_thread_is_reused(self, supabase):
        supabase.seed("threads", {"id": "th1", "trip_id": "t1"})
        assert resolve_trip_thread_id(supabase, "t1", ME) == "th1"
        assert len(supabase.rows("threads")) == 1

    def test_thread_is_created(self, supabase):
        supabase.ensure_table("threads")

        thread_id = resolve_trip_thread_id(supabase, "t1", ME)

        row = supabase.rows("threads")[0]
        assert thread_id == row["id"]
        assert row["thread_type"] == "trip"
        assert row["created_by"] == ME

    def test_lost_creation_race_rereads(self, supabase):
        supabase.ensure_table("threads")
        # The concurrent writer's row appears as our insert fails
        supabase.fail("threads", "insert", duplicate_key("threads"), times=1)
        original_execute = supabase._execute

        def execute(query):
            if query.table == "threads" and query.operation == "insert":
                supabase.rows("threads").append({"id": "theirs", "trip_id": "t1"})
            return original_execute(query)

        supabase._execute = execute

        assert resolve_trip_thread_id(supabase, "t1", ME) == "theirs"

    def test_legacy_schema_has_no_thread(self, supabase):
        assert resolve_trip_thread_id(supabase, "t1", ME) is None
        assert ensure_trip_thread(supabase, "t1", ME, [ME, OTHER]) is None

    def test_ensure_trip_thread_adds_everyone_once(self, supabase):
        supabase.ensure_table("threads")
        supabase.ensure_table("thread_participants")

        thread_id = ensure_trip_thread(supabase, "t1", ME, [ME, OTHER, OTHER, ""])

        rows = supabase.rows("thread_participants")
        assert [row["user_id"] for row in rows] == [ME, OTHER]
        assert all(row["thread_id"] == thread_id for row in rows)
        assert "last_read_at" in rows[0]
        assert "last_read_at" not in rows[1]
