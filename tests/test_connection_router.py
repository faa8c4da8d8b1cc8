"""/api/connect, /api/connections/action and the connection read model endpoints."""
from tests.conftest import ME, OTHER, THIRD, api_error, auth_headers


class TestConnect:

    def test_requires_auth_before_body(self, client):
        resp = client.post("/api/connect", json={})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Missing auth token."

    def test_invalid_token(self, client):
        resp = client.post("/api/connect", json={"targetId": OTHER}, headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid auth token."

    def test_validation(self, client):
        assert client.post("/api/connect", json={}, headers=auth_headers()).json()["error"] == "Missing targetId."
        resp = client.post("/api/connect", json={"targetId": ME}, headers=auth_headers())
        assert resp.status_code == 400
        assert resp.json()["error"] == "You cannot connect with yourself."

    def test_procedure(self, client, supabase):
        supabase.on_rpc("create_connection_request", "conn-1")

        resp = client.post(
            "/api/connect",
            json={"targetId": OTHER, "payload": {"connect_context": "trip", "trip_id": "t1"}},
            headers=auth_headers(),
        )

        assert resp.json() == {"ok": True, "connection_id": "conn-1", "mode": "create_connection_request"}
        params = supabase.rpc_calls[0][1]
        assert params["p_target_id"] == OTHER
        assert params["p_context"] == "trip"
        assert params["p_trip_id"] == "t1"

    def test_insert_when_procedure_missing(self, client, supabase):
        supabase.ensure_table("connections", columns={"id", "requester_id", "target_id", "status"})

        resp = client.post(
            "/api/connect",
            json={"targetId": OTHER, "payload": {"connect_reason": "practice"}},
            headers=auth_headers(),
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["mode"] == "insert"
        row = supabase.rows("connections")[0]
        assert row == {"id": resp.json()["connection_id"], "requester_id": ME, "target_id": OTHER, "status": "pending"}

    def test_procedure_error_passes_through(self, client, supabase):
        supabase.on_rpc("create_connection_request", api_error("already_connected"))

        resp = client.post("/api/connect", json={"targetId": OTHER}, headers=auth_headers())

        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "error": "already_connected", "kind": "invalid"}


class TestConnectionAction:

    def _post(self, client, body):
        return client.post("/api/connections/action", json=body, headers=auth_headers())

    def test_invalid_action(self, client):
        resp = self._post(client, {"connId": "c1", "action": "poke"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid action."

    def test_missing_connection(self, client):
        resp = self._post(client, {"action": "accept"})
        assert resp.json()["error"] == "Missing connId (or targetUserId for block)."

    def test_simple_actions(self, client, supabase):
        for action, procedure in (
            ("accept", "accept_connection_request"),
            ("decline", "decline_connection_request"),
            ("undo_decline", "undo_decline_connection_request"),
            ("cancel", "cancel_connection_request"),
            ("unblock", "unblock_connection"),
        ):
            supabase.on_rpc(procedure, None)
            resp = self._post(client, {"connId": "c1", "action": action})
            assert resp.json() == {"ok": True}
            assert supabase.rpc_calls[-1] == (procedure, {"p_connection_id": "c1"})

    def test_block_by_user(self, client, supabase):
        supabase.on_rpc("block_connection", "c9")

        resp = self._post(client, {"targetUserId": OTHER, "action": "block"})

        assert resp.json() == {"ok": True, "connection_id": "c9"}
        assert supabase.rpc_calls[-1][1] == {"p_connection_id": None, "p_target_user_id": OTHER}

    def test_report(self, client, supabase):
        supabase.on_rpc("create_report", "rep-1")

        resp = self._post(client, {"connId": "c1", "action": "report", "reason": " Harassment ", "note": ""})

        assert resp.json() == {"ok": True, "report_id": "rep-1"}
        params = supabase.rpc_calls[-1][1]
        assert params["p_reason"] == "Harassment"
        assert params["p_context"] == "connection"
        assert params["p_context_id"] == "c1"
        assert params["p_note"] is None

    def test_report_needs_reason(self, client):
        resp = self._post(client, {"connId": "c1", "action": "report"})
        assert resp.json()["error"] == "Report reason is required."

    def test_procedure_error(self, client, supabase):
        supabase.on_rpc("accept_connection_request", api_error("not_authorized"))
        resp = self._post(client, {"connId": "c1", "action": "accept"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "not_authorized"


class TestConnectionReads:

    def test_visible_connections(self, client, supabase):
        supabase.seed(
            "connections",
            {"id": "c1", "requester_id": ME, "target_id": OTHER, "status": "accepted"},
            {"id": "c2", "requester_id": OTHER, "target_id": THIRD, "status": "accepted"},
        )

        resp = client.get("/api/connections/visible", headers=auth_headers())

        rows = resp.json()["connections"]
        assert [row["id"] for row in rows] == ["c1"]
        assert rows[0]["other_user_id"] == OTHER

    def test_state(self, client, supabase):
        supabase.seed(
            "connections",
            {"id": "old", "requester_id": OTHER, "target_id": ME, "status": "pending"},
            {"id": "c1", "requester_id": ME, "target_id": OTHER, "status": "accepted"},
            {"id": "c3", "requester_id": THIRD, "target_id": ME, "status": "blocked"},
        )

        resp = client.get(f"/api/connections/state/{OTHER}", headers=auth_headers())

        assert resp.json() == {"ok": True, "status": "accepted", "id": "c1", "role": None}

    def test_state_seen_by_target(self, client, supabase):
        supabase.seed("connections", {"id": "c1", "requester_id": OTHER, "target_id": ME, "status": "pending"})

        data = client.get(f"/api/connections/state/{OTHER}", headers=auth_headers()).json()

        assert (data["status"], data["role"]) == ("pending", "target")

    def test_state_needs_a_user_id(self, client, supabase):
        supabase.seed("connections", {"id": "c1", "requester_id": ME, "target_id": THIRD, "status": "accepted"})

        resp = client.get(f"/api/connections/state/x),and(requester_id.eq.{ME}", headers=auth_headers())

        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid user id."
