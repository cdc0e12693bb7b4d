from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from payout_ledger.errors import RowError


@dataclass
class ImportReport:
    total: int = 0
    imported: int = 0
    unchanged: int = 0
    skipped: int = 0
    status_updates: int = 0
    errors: list[str] = field(default_factory=list)
    aborted: bool = False
    failed: bool = False
    dry_run: bool = False

    @classmethod
    def abort(cls, message: str, *, total: int = 0, dry_run: bool = False) -> "ImportReport":
        return cls(total=total, errors=[message], aborted=True, dry_run=dry_run)

    def add_row_errors(self, *groups: list[RowError]) -> None:
        merged = [error for group in groups for error in group]
        merged.sort(key=lambda e: e.row if e.row is not None else 0)
        self.errors.extend(str(e) for e in merged)
        self.skipped += len(merged)

    def as_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "total": self.total,
            "errors": list(self.errors),
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "status_updates": self.status_updates,
            "aborted": self.aborted,
            "failed": self.failed,
            "dry_run": self.dry_run,
        }
