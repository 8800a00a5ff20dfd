from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Course:
    """Read-only view of a course owned by the catalog."""

    id: str
    title: str
    is_published: bool = False
