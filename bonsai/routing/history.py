"""Bounded routing history and the analytics computed from it."""

from __future__ import annotations

from collections import Counter, deque
from typing import Any

from bonsai.models.routing import RoutingHistoryEntry

DEFAULT_HISTORY_SIZE = 100
DEFAULT_ANALYTICS_WINDOW = 50


class RoutingHistory:
    """Most-recent-N ring of routing outcomes.

    Appending past capacity evicts the oldest entry. Analytics averages are
    taken over the last ``window`` entries; totals and success rate over the
    whole ring.
    """

    def __init__(
        self,
        maxlen: int = DEFAULT_HISTORY_SIZE,
        *,
        window: int = DEFAULT_ANALYTICS_WINDOW,
    ) -> None:
        if maxlen < 1 or window < 1:
            raise ValueError("maxlen and window must be positive")
        self._entries: deque[RoutingHistoryEntry] = deque(maxlen=maxlen)
        self._window = window

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def maxlen(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: RoutingHistoryEntry) -> None:
        self._entries.append(entry)

    def entries(self) -> list[RoutingHistoryEntry]:
        return list(self._entries)

    def recent(self) -> list[RoutingHistoryEntry]:
        return list(self._entries)[-self._window :]

    def clear(self) -> None:
        self._entries.clear()

    def analytics(self) -> dict[str, Any]:
        total = len(self._entries)
        recent = self.recent()
        successes = sum(1 for entry in self._entries if entry.success)
        return {
            "total_requests": total,
            "success_rate": successes / total if total else 0.0,
            "average_cost": (
                sum(entry.response.cost for entry in recent) / len(recent) if recent else 0.0
            ),
            "average_tokens": (
                sum(entry.response.tokens_used for entry in recent) / len(recent) if recent else 0.0
            ),
            "provider_usage": dict(Counter(entry.response.provider for entry in recent)),
            "variant_usage": dict(Counter(entry.response.variant for entry in recent)),
        }
