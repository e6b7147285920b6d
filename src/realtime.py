"""
Live views – local state kept current by the backend's change stream.

Each view is seeded from a full fetch and then applies INSERT/UPDATE/DELETE
change events as they arrive, last write wins per row id. Missed events are
not recovered until the next full fetch.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """One row change as delivered by the backend channel."""
    type: str
    table: str
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        return cls(
            type=str(payload.get("eventType", payload.get("type", ""))).upper(),
            table=payload.get("table", ""),
            new=payload.get("new") or {},
            old=payload.get("old") or {},
        )


class LiveView:
    """Rows of one table, keyed by id."""

    table = ""

    def __init__(self, match: Optional[Callable[[Dict[str, Any]], bool]] = None):
        self._match = match or (lambda row: True)
        self.rows: Dict[Any, Dict[str, Any]] = {}

    def seed(self, rows: Iterable[Dict[str, Any]]) -> None:
        self.rows = {r["id"]: dict(r) for r in rows if self._match(r)}

    def apply(self, event: ChangeEvent) -> bool:
        """Apply *event*; returns True when local state changed."""
        if event.table and event.table != self.table:
            return False

        if event.type == DELETE:
            row_id = event.old.get("id")
            return self.rows.pop(row_id, None) is not None

        if event.type not in (INSERT, UPDATE):
            return False

        row = event.new
        row_id = row.get("id")
        if row_id is None:
            return False
        if not self._match(row):
            # An update can move a row out of this view (e.g. reassigned bank).
            return self.rows.pop(row_id, None) is not None

        previous = self.rows.get(row_id)
        self.rows[row_id] = {**(previous or {}), **row}
        self.on_change(previous, self.rows[row_id])
        return True

    def on_change(self, previous, current) -> None:
        pass

    def items(self) -> List[Dict[str, Any]]:
        return list(self.rows.values())


class LiveInventory(LiveView):
    table = "blood_inventory"

    def __init__(self, blood_bank_id: Optional[str] = None, today: Optional[date] = None):
        cutoff = (today or date.today()).isoformat()

        def match(row):
            if blood_bank_id and row.get("blood_bank_id") != blood_bank_id:
                return False
            if row.get("is_available") is False:
                return False
            expiry = row.get("expiry_date")
            return expiry is None or str(expiry) >= cutoff

        super().__init__(match)
        self.trend: Dict[str, str] = {}

    def on_change(self, previous, current):
        blood_type = current.get("blood_type")
        if previous is None:
            self.trend[blood_type] = "up"
            return
        before = int(previous.get("units_available") or 0)
        after = int(current.get("units_available") or 0)
        self.trend[blood_type] = "up" if after > before else "down" if after < before else "same"

    def totals(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for row in self.rows.values():
            bt = row.get("blood_type")
            out[bt] = out.get(bt, 0) + int(row.get("units_available") or 0)
        return out


class LiveDonations(LiveView):
    table = "donations"

    def __init__(self, donor_id: Optional[str] = None, blood_bank_id: Optional[str] = None):
        def match(row):
            if donor_id and row.get("donor_id") != donor_id:
                return False
            if blood_bank_id and row.get("blood_bank_id") != blood_bank_id:
                return False
            return True
        super().__init__(match)


class LiveRequests(LiveView):
    table = "blood_requests"

    def __init__(self, recipient_id: Optional[str] = None, status: Optional[str] = None):
        def match(row):
            if recipient_id and row.get("recipient_id") != recipient_id:
                return False
            if status and row.get("status") != status:
                return False
            return True
        super().__init__(match)


class NotificationFeed(LiveView):
    """A user's notifications; the channel only delivers inserts."""
    table = "notifications"

    def __init__(self, user_id: str):
        super().__init__(lambda row: row.get("user_id", user_id) == user_id)

    def apply(self, event: ChangeEvent) -> bool:
        if event.type != INSERT:
            return False
        return super().apply(event)

    def items(self):
        return sorted(self.rows.values(), key=lambda n: str(n.get("created_at", "")), reverse=True)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.rows.values() if not n.get("is_read"))

    def mark_read(self, notification_id=None) -> None:
        targets = [notification_id] if notification_id is not None else list(self.rows)
        for nid in targets:
            if nid in self.rows:
                self.rows[nid]["is_read"] = True


class Subscription:
    """Feeds events from *source* into *view* until closed."""

    def __init__(self, source: Iterable, view: LiveView):
        self._source = source
        self.view = view
        self.closed = False
        self.applied = 0

    def run(self) -> int:
        for payload in self._source:
            if self.closed:
                break
            event = payload if isinstance(payload, ChangeEvent) else ChangeEvent.from_payload(payload)
            if self.view.apply(event):
                self.applied += 1
        return self.applied

    def close(self) -> None:
        self.closed = True
        closer = getattr(self._source, "close", None)
        if callable(closer):
            closer()
