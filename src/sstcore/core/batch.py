"""Per-item results for bulk operations.

Bulk actions (assigning many workers to a session, removing several
participants) continue past per-item failures and report every outcome in a
single BatchResult value.
"""

from dataclasses import dataclass, field


@dataclass
class BatchItemResult:
    """Outcome of one item in a batch."""

    key: str
    ok: bool
    error: str = ""
    error_type: str = ""


@dataclass
class BatchResult:
    """Aggregated outcome of a batch operation."""

    items: list[BatchItemResult] = field(default_factory=list)

    def record_success(self, key: str) -> None:
        self.items.append(BatchItemResult(key=key, ok=True))

    def record_failure(self, key: str, exc: Exception) -> None:
        self.items.append(
            BatchItemResult(key=key, ok=False, error=str(exc), error_type=type(exc).__name__)
        )

    @property
    def succeeded(self) -> list[str]:
        return [item.key for item in self.items if item.ok]

    @property
    def failed(self) -> list[BatchItemResult]:
        return [item for item in self.items if not item.ok]

    @property
    def all_ok(self) -> bool:
        return all(item.ok for item in self.items)

    def summary(self) -> dict[str, int]:
        """Counts for partial-success reporting."""
        return {
            "total": len(self.items),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
        }
