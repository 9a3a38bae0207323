# ============================================================================
# ARTIFACT MODEL
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core model - Run-scoped artifact metadata
# PURPOSE: Describe an immutable, versioned blob bound to a run
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: Artifact
# DEPENDENCIES: pydantic
# ============================================================================
"""
Artifact Model

An Artifact is a named directory tree uploaded during a job's execution.
Metadata lives here; the bytes live in a BlobStorage under `content_ref`.

Each upload creates a new immutable version. Replacing a name requires
an explicit overwrite, which bumps the version.
"""

from datetime import datetime, timedelta
from typing import List, Optional
from pydantic import BaseModel, Field, computed_field


class Artifact(BaseModel):
    """Metadata for one stored artifact version."""

    name: str = Field(..., min_length=1, max_length=256)
    version: int = Field(default=1, ge=1)
    run_id: str = Field(..., max_length=64)
    node_id: Optional[str] = Field(default=None, max_length=128)

    retention_days: int = Field(..., ge=1)
    size_bytes: int = Field(default=0, ge=0)
    files: List[str] = Field(default_factory=list, description="Relative paths in the tree")
    content_ref: str = Field(..., description="BlobStorage prefix holding the tree")

    created_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def expires_at(self) -> datetime:
        """When retention runs out."""
        return self.created_at + timedelta(days=self.retention_days)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check retention against `now` (defaults to utcnow)."""
        return (now or datetime.utcnow()) >= self.expires_at


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Artifact"]
