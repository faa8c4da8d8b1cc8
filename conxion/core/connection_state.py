from dataclasses import dataclass
from typing import Iterable, Literal, Mapping, Optional

ConnectionRow = Mapping[str, object]


@dataclass(frozen=True)
class ConnectionState:
    status: Literal["none", "pending", "accepted", "blocked"]
    id: Optional[str] = None
    role: Optional[Literal["requester", "target"]] = None

    def to_dict(self) -> dict:
        data: dict = {"status": self.status}
        if self.role is not None:
            data["role"] = self.role
        if self.id is not None:
            data["id"] = self.id
        return data


NO_CONNECTION = ConnectionState(status="none")


def _text(row: ConnectionRow, key: str) -> str:
    value = row.get(key)
    return value if isinstance(value, str) else ""


def is_connection_participant(conn: ConnectionRow, user_id: str) -> bool:
    return _text(conn, "requester_id") == user_id or _text(conn, "target_id") == user_id


def get_other_user_id(conn: ConnectionRow, user_id: str) -> str:
    if _text(conn, "requester_id") == user_id:
        return _text(conn, "target_id")
    if _text(conn, "target_id") == user_id:
        return _text(conn, "requester_id")
    return ""


def is_blocked_connection(conn: ConnectionRow) -> bool:
    """
    Returns True if the row is blocked, either by status or by a
    ``blocked_by`` marker left on an otherwise accepted row.
    """
    return _text(conn, "status") == "blocked" or bool(conn.get("blocked_by"))


def is_visible_accepted_connection(conn: ConnectionRow, user_id: str) -> bool:
    return (
        is_connection_participant(conn, user_id)
        and _text(conn, "status") == "accepted"
        and not is_blocked_connection(conn)
    )


def is_incoming_pending_connection(conn: ConnectionRow, user_id: str) -> bool:
    return (
        is_connection_participant(conn, user_id)
        and _text(conn, "status") == "pending"
        and _text(conn, "target_id") == user_id
    )


def is_outgoing_pending_connection(conn: ConnectionRow, user_id: str) -> bool:
    return (
        is_connection_participant(conn, user_id)
        and _text(conn, "status") == "pending"
        and _text(conn, "requester_id") == user_id
    )


def _is_pair_row(row: ConnectionRow, my_user_id: str, other_user_id: str) -> bool:
    requester = _text(row, "requester_id")
    target = _text(row, "target_id")
    return (requester == my_user_id and target == other_user_id) or (
        requester == other_user_id and target == my_user_id
    )


def derive_connection_state(
    rows: Iterable[ConnectionRow],
    my_user_id: str,
    other_user_id: str,
) -> ConnectionState:
    """
    Collapse every row between two users into a single state.

    A pair can carry duplicates from earlier request cycles, so precedence is
    fixed: blocked, then accepted, then incoming pending, then outgoing
    pending.
    """
    pair_rows = [row for row in rows if _is_pair_row(row, my_user_id, other_user_id)]
    if not pair_rows:
        return NO_CONNECTION

    for row in pair_rows:
        if is_blocked_connection(row):
            return ConnectionState(status="blocked", id=_text(row, "id") or None)

    for row in pair_rows:
        if _text(row, "status") == "accepted":
            return ConnectionState(status="accepted", id=_text(row, "id") or None)

    for row in pair_rows:
        if _text(row, "status") == "pending" and _text(row, "target_id") == my_user_id:
            return ConnectionState(status="pending", role="target", id=_text(row, "id") or None)

    for row in pair_rows:
        if _text(row, "status") == "pending" and _text(row, "requester_id") == my_user_id:
            return ConnectionState(status="pending", role="requester", id=_text(row, "id") or None)

    return NO_CONNECTION
