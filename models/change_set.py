"""
Change Set model.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Set


@dataclass
class ChangeSet:
    """Represents the result of polling one source for new entries."""

    source: str
    url: Optional[str] = None
    new_entries: Set[str] = field(default_factory=set)
    baseline: bool = False
    total_entries: int = 0
    error: Optional[str] = None
    check_time: datetime = field(default_factory=datetime.now)

    def __str__(self) -> str:
        if self.error:
            status = f"ERROR: {self.error}"
        elif self.baseline:
            status = "BASELINE"
        elif self.changed:
            status = f"{len(self.new_entries)} NEW"
        else:
            status = "NO CHANGE"

        lines = [f"[{status}] {self.source} ({self.total_entries} entries)"]
        for entry in sorted(self.new_entries):
            lines.append(f"  + {entry}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'source': self.source,
            'url': self.url,
            'new_entries': sorted(self.new_entries),
            'baseline': self.baseline,
            'total_entries': self.total_entries,
            'error': self.error,
            'check_time': self.check_time.isoformat() if self.check_time else None,
        }

    @property
    def changed(self) -> bool:
        """True when the poll found entries that were not there before."""
        return bool(self.new_entries)

    @property
    def is_success(self) -> bool:
        """Check if the poll was successful."""
        return self.error is None

    @property
    def status(self) -> str:
        """Get status string."""
        if self.error:
            return 'error'
        return 'updated' if self.changed else 'unchanged'
