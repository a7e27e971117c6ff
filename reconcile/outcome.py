from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from config.settings import settings


class ItemStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    key: str
    status: ItemStatus
    reason: str = ""
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "status": self.status.value, "reason": self.reason, "detail": self.detail}


@dataclass
class BatchReport:
    """Per-item outcomes of one batch run plus their aggregate counts."""

    name: str
    dry_run: bool = True
    results: List[ItemResult] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    def add(self, key: str, status: ItemStatus, reason: str = "", **detail: Any) -> ItemResult:
        item = ItemResult(key=key, status=status, reason=reason, detail=detail)
        self.results.append(item)
        return item

    def count(self, status: ItemStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def ok(self) -> int:
        return self.count(ItemStatus.OK)

    @property
    def skipped(self) -> int:
        return self.count(ItemStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(ItemStatus.FAILED)

    def reasons(self) -> Counter:
        return Counter(f"{r.status.value}/{r.reason}" for r in self.results)

    def extend(self, other: "BatchReport") -> None:
        self.results.extend(other.results)

    def exit_code(self, strict: bool = False) -> int:
        return 1 if strict and self.failed else 0

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "dry_run": self.dry_run,
            "total": self.total,
            "ok": self.ok,
            "skipped": self.skipped,
            "failed": self.failed,
            "reasons": dict(sorted(self.reasons().items())),
            **self.meta,
        }

    def to_dict(self, include_skipped: bool = False) -> Dict[str, Any]:
        items = [r for r in self.results if include_skipped or r.status != ItemStatus.SKIPPED]
        return {**self.summary(), "results": [r.to_dict() for r in items]}

    def render(self, max_details: Optional[int] = None) -> str:
        max_details = settings.REPORT_MAX_DETAILS if max_details is None else max_details
        mode = "DRY RUN" if self.dry_run else "EXECUTED"
        bar = "=" * 80
        lines = [bar, f"{self.name} ({mode})", bar]
        lines.append(f"  {'total':<40}{self.total:>8}")
        lines.append(f"  {'ok':<40}{self.ok:>8}")
        lines.append(f"  {'skipped':<40}{self.skipped:>8}")
        lines.append(f"  {'failed':<40}{self.failed:>8}")
        for k, v in sorted(self.meta.items()):
            if isinstance(v, (int, float, str, bool)):
                lines.append(f"  {k:<40}{str(v):>8}")

        reasons = self.reasons()
        if reasons:
            lines.append("")
            lines.append("  by reason:")
            for reason, n in sorted(reasons.items()):
                lines.append(f"    {reason:<38}{n:>8}")

        notable = [r for r in self.results if r.status != ItemStatus.SKIPPED]
        if notable and max_details:
            lines.append("")
            lines.append(f"  details (first {min(len(notable), max_details)} of {len(notable)}):")
            for r in notable[:max_details]:
                extra = " ".join(f"{k}={v}" for k, v in r.detail.items())
                lines.append(f"    [{r.status.value}] {r.key} {r.reason} {extra}".rstrip())
            if len(notable) > max_details:
                lines.append(f"    ... and {len(notable) - max_details} more")
        return "\n".join(lines)
