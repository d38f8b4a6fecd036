"""Per-item results for one batch and the host-facing partial failure response."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ItemResult:
    """Terminal result of one batch slot."""

    item_id: str
    success: bool
    error_kind: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, item_id: str) -> "ItemResult":
        return cls(item_id=item_id, success=True)

    @classmethod
    def failed(cls, item_id: str, error: Exception) -> "ItemResult":
        return cls(
            item_id=item_id,
            success=False,
            error_kind=type(error).__name__,
            reason=str(error)[:500],
        )


@dataclass
class BatchOutcome:
    """
    Results for every slot of a batch, in input order.

    An item_id that occurs more than once is failed if any of its
    occurrences failed, and is listed in ``duplicate_ids``.
    """

    results: List[ItemResult] = field(default_factory=list)
    duplicate_ids: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "BatchOutcome":
        return cls()

    @property
    def failed_item_ids(self) -> List[str]:
        """Failed ids, first-occurrence order, no repeats."""
        seen = set()
        failed = []
        for result in self.results:
            if not result.success and result.item_id not in seen:
                seen.add(result.item_id)
                failed.append(result.item_id)
        return failed

    @property
    def succeeded_item_ids(self) -> List[str]:
        failed = set(self.failed_item_ids)
        seen = set()
        succeeded = []
        for result in self.results:
            if result.item_id not in failed and result.item_id not in seen:
                seen.add(result.item_id)
                succeeded.append(result.item_id)
        return succeeded

    @property
    def by_item(self) -> Dict[str, ItemResult]:
        """One result per item_id; a failure wins over a success."""
        merged: Dict[str, ItemResult] = {}
        for result in self.results:
            current = merged.get(result.item_id)
            if current is None or (current.success and not result.success):
                merged[result.item_id] = result
        return merged

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.results)

    def to_batch_response(self) -> Dict[str, Any]:
        """Partial batch response understood by the SQS event source mapping."""
        return {
            "batchItemFailures": [
                {"itemIdentifier": item_id} for item_id in self.failed_item_ids
            ]
        }


__all__ = ["ItemResult", "BatchOutcome"]
