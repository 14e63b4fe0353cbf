"""AlertBook — active alerts keyed by dedup key."""

from __future__ import annotations

import time

from nocwatch.core.types import AlertRecord, Severity


class AlertBook:
    """Holds at most one active AlertRecord per key.

    Raising an active key refreshes it in place; only the first raise since
    the key was last cleared reports ``is_new``.
    """

    def __init__(self) -> None:
        self._active: dict[str, AlertRecord] = {}

    # ── Properties ────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, key: object) -> bool:
        return key in self._active

    def get(self, key: str) -> AlertRecord | None:
        return self._active.get(key)

    def active(self) -> list[AlertRecord]:
        """Active alerts, oldest raise first."""
        return sorted(self._active.values(), key=lambda a: a.raised_at)

    # ── State mutation ───────────────────────────────────────────

    def raise_alert(
        self,
        key: str,
        message: str,
        severity: Severity,
        now: float | None = None,
    ) -> tuple[AlertRecord, bool]:
        """Create or refresh the record for *key*.

        Returns the current record and whether it was newly created.
        """
        now = time.time() if now is None else now
        existing = self._active.get(key)
        if existing is None:
            record = AlertRecord(key=key, message=message, severity=severity, raised_at=now)
            self._active[key] = record
            return record, True

        record = existing.model_copy(
            update={"message": message, "severity": severity, "raised_at": now}
        )
        self._active[key] = record
        return record, False

    def clear(self, key: str) -> AlertRecord | None:
        """Remove *key*. Clearing an inactive key is a no-op returning None."""
        return self._active.pop(key, None)

    def clear_all(self) -> list[AlertRecord]:
        cleared = self.active()
        self._active.clear()
        return cleared
