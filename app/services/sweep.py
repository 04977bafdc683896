# app/services/sweep.py

from dataclasses import dataclass, field
from typing import Any, Dict, List

from app.errors import InvoicingError


@dataclass
class SweepResult:
    """Outcome of one batch pass; per-item failures never abort the pass."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def record_success(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def record_skip(self) -> None:
        self.processed += 1
        self.skipped += 1

    def record_failure(self, item_id: int, exc: Exception) -> None:
        self.processed += 1
        self.failed += 1
        code = exc.code if isinstance(exc, InvoicingError) else "INTERNAL_ERROR"
        self.errors.append({"id": item_id, "code": code, "error": str(exc)})

    def summary(self) -> str:
        return (
            f"processed={self.processed} succeeded={self.succeeded} "
            f"skipped={self.skipped} failed={self.failed}"
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }
