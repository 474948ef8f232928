"""
Run Results
Transient summary values assembled after both sides of a run are streamed
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ColumnMeta:
    name: str
    type_name: str


@dataclass(frozen=True)
class DatasetMeta:
    cols: List[ColumnMeta] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.cols


@dataclass(frozen=True)
class DatasetResults:
    """Row count and column metadata for one side of a run."""
    rows: int = 0
    meta: DatasetMeta = field(default_factory=DatasetMeta)


@dataclass(frozen=True)
class MatchStatus:
    """
    Four-way classification of the records of a run.

    The counts sum to the number of distinct migration keys seen on either side.
    """
    source_only: int = 0
    target_only: int = 0
    matched: int = 0
    mismatched: int = 0

    def __add__(self, other: "MatchStatus") -> "MatchStatus":
        return MatchStatus(
            source_only=self.source_only + other.source_only,
            target_only=self.target_only + other.target_only,
            matched=self.matched + other.matched,
            mismatched=self.mismatched + other.mismatched,
        )

    @property
    def total(self) -> int:
        return self.source_only + self.target_only + self.matched + self.mismatched


@dataclass(frozen=True)
class RunResults:
    source: DatasetResults
    target: DatasetResults
    summary: Optional[MatchStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        """camelCase document shape used by the API and CLI."""
        def side(results: DatasetResults) -> Dict[str, Any]:
            return {
                "rows": results.rows,
                "meta": {
                    "cols": [{"name": c.name, "type": c.type_name} for c in results.meta.cols]
                },
            }

        summary = None
        if self.summary is not None:
            summary = {
                "sourceOnly": self.summary.source_only,
                "targetOnly": self.summary.target_only,
                "matched": self.summary.matched,
                "mismatched": self.summary.mismatched,
            }
        return {"source": side(self.source), "target": side(self.target), "summary": summary}
