"""Shared typed models for the fetch and index tools."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any


@dataclass(frozen=True, slots=True)
class Work:
    """One work as listed on an archive search page."""

    id: str
    title: str
    author: str | None = None
    relationships: list[str] = field(default_factory=list)
    characters: list[str] = field(default_factory=list)
    freeforms: list[str] = field(default_factory=list)
    date: date | None = None
    language: str = ""
    words: int = 0
    kudos: int = 0
    hits: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping with the date as YYYY-MM-DD."""
        record = asdict(self)
        record["date"] = self.date.isoformat() if self.date else None
        return record
