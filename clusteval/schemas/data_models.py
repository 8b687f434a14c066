"""
Data models for the extension registry.

Pydantic models describing:
- Loaded artifact records kept by the dynamic loader between scans
- Registry snapshots reported by the CLI
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class LoadOutcome(str, Enum):
    """Result of loading one artifact file."""

    LOADED = "loaded"
    PARTIAL = "partial"
    FAILED = "failed"


class LoadedArtifactRecord(BaseModel):
    """What the dynamic loader knows about one artifact file."""

    path: str = Field(..., description="Absolute path of the artifact file")
    mtime: float = Field(..., description="Modification timestamp seen at the last load")
    class_names: List[str] = Field(
        default_factory=list,
        description="Fully-qualified names of the classes registered from this artifact",
    )
    outcome: LoadOutcome = Field(default=LoadOutcome.FAILED, description="Outcome of the last load")
    errors: List[str] = Field(default_factory=list, description="Error messages of the last load")

    def is_current(self, mtime: float) -> bool:
        """True if the artifact has not changed since it was recorded."""
        return mtime <= self.mtime


class FormatConversion(BaseModel):
    """A conversion between two dataset formats offered by a parser method."""

    source_format: str
    target_format: str
    parser: str
    method: str


class CategorySnapshot(BaseModel):
    """Registered content of one category."""

    category: str
    initialized: bool = False
    classes: List[str] = Field(default_factory=list)
    objects: List[str] = Field(default_factory=list)
    versions: Dict[str, int] = Field(default_factory=dict)


class RegistrySnapshot(BaseModel):
    """Point-in-time view of a repository."""

    root: str
    parent_root: Optional[str] = None
    categories: List[CategorySnapshot] = Field(default_factory=list)
    conversions: List[FormatConversion] = Field(default_factory=list)
    known_errors: Dict[str, List[str]] = Field(default_factory=dict)

    def count(self) -> int:
        return sum(len(c.classes) + len(c.objects) for c in self.categories)
