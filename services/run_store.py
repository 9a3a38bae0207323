# ============================================================================
# RUN OUTPUT / ARTIFACT STORE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Service - Run-scoped outputs and artifacts
# PURPOSE: Propagate job outputs and artifacts between dependent jobs
# CREATED: 14 OCT 2026
# ============================================================================
"""
Run Store

Key-value and blob store scoped to one workflow run.

Outputs:
- put_output(node_id, name, value) accumulates a node's outputs while it runs
- seal(node_id, status) freezes them at the node's terminal transition
- get_outputs(node_id) returns values only once sealed with success

Each node is the single writer of its own outputs; readers only see
sealed outputs, so the read path needs no locking.

Artifacts:
- put_artifact creates an immutable, versioned entry (overwrite must be
  explicit); size/count/retention ceilings fail fast with QuotaExceededError
- get_artifact supports glob patterns and merging of directory trees
- purge_expired / purge drop content when retention ends or the run goes

Artifact bytes live in a BlobStorage; the artifact index is kept next to
them so a restarted process sees the same artifacts.
"""

import fnmatch
import json
import logging
import threading
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Union

from core.config import ArtifactDefaults, get_defaults
from core.contracts import NodeStatus
from core.errors import (
    ArtifactExistsError,
    ArtifactNotFoundError,
    DuplicateOutputError,
    QuotaExceededError,
    StoreError,
)
from core.models import Artifact, WorkflowRun
from infrastructure.storage import BlobStorage, MemoryBlobStorage

logger = logging.getLogger(__name__)

# Directory tree: relative path -> content
FileTree = Dict[str, bytes]

_GLOB_CHARS = set("*?[")
_INVALID_NAME_CHARS = set("*?[]/\\:\"<>|\r\n")

_RUNS_PREFIX = "runs/"
_INDEX_NAME = "artifacts.json"


def _is_pattern(name: str) -> bool:
    return any(c in _GLOB_CHARS for c in name)


def _validate_name(name: str) -> None:
    """An artifact name must be a single path segment with no glob characters."""
    if (
        not name
        or any(c in _INVALID_NAME_CHARS for c in name)
        or name.strip() in (".", "..")
        or PurePosixPath(name).parts != (name,)
    ):
        raise StoreError(f"Invalid artifact name: '{name}'")


def _normalize_path(path: str) -> str:
    """Validate and normalize a relative artifact path."""
    pure = PurePosixPath(path.replace("\\", "/"))
    if pure.is_absolute() or ".." in pure.parts or not pure.parts:
        raise StoreError(f"Invalid artifact file path: '{path}'")
    return pure.as_posix()


class RunStore:
    """
    Output and artifact store for one run.

    Usage:
        store = RunStore("run-abc", blobs)
        store.put_output("build", "version", "1.2.3")
        store.seal("build", NodeStatus.SUCCESS)
        store.get_outputs("build")  # {"version": "1.2.3"}
    """

    def __init__(
        self,
        run_id: str,
        blobs: Optional[BlobStorage] = None,
        limits: Optional[ArtifactDefaults] = None,
    ):
        self.run_id = run_id
        self.blobs = blobs or MemoryBlobStorage()
        self.limits = limits or get_defaults().artifacts

        self._outputs: Dict[str, Dict[str, str]] = {}
        self._sealed: Dict[str, NodeStatus] = {}
        self._artifacts: Dict[str, Artifact] = {}
        self._lock = threading.RLock()

        self._load_index()

    # ========================================================================
    # OUTPUTS
    # ========================================================================

    def put_output(self, node_id: str, name: str, value: Any) -> None:
        """
        Record one output of a node.

        Before sealing, writes are accepted (last write wins). After sealing,
        writing the same value again is a no-op; a different value raises.

        Raises:
            DuplicateOutputError: Different value written after sealing
        """
        text = value if isinstance(value, str) else json.dumps(value, default=str)
        with self._lock:
            outputs = self._outputs.setdefault(node_id, {})
            if node_id in self._sealed:
                if outputs.get(name) == text:
                    return
                raise DuplicateOutputError(
                    f"Output '{name}' of sealed node '{node_id}' cannot be changed"
                )
            outputs[name] = text

    def seal(self, node_id: str, status: NodeStatus) -> Dict[str, str]:
        """
        Freeze a node's outputs at its terminal transition.

        Returns:
            The sealed outputs (visible to readers only if status is success)
        """
        with self._lock:
            self._sealed.setdefault(node_id, status)
            return dict(self._outputs.get(node_id, {}))

    def is_sealed(self, node_id: str) -> bool:
        return node_id in self._sealed

    def get_outputs(self, node_id: str) -> Dict[str, str]:
        """Sealed outputs of a successful node; empty otherwise."""
        if self._sealed.get(node_id) != NodeStatus.SUCCESS:
            return {}
        return dict(self._outputs.get(node_id, {}))

    def pending_outputs(self, node_id: str) -> Dict[str, str]:
        """Outputs written so far by a node that is still running."""
        with self._lock:
            return dict(self._outputs.get(node_id, {}))

    def restore(self, run: WorkflowRun) -> None:
        """Rehydrate sealed outputs from persisted terminal nodes."""
        with self._lock:
            for node in run.nodes.values():
                if node.status.is_terminal():
                    self._outputs[node.node_id] = dict(node.outputs)
                    self._sealed[node.node_id] = node.status

    # ========================================================================
    # ARTIFACTS
    # ========================================================================

    def put_artifact(
        self,
        name: str,
        files: Union[FileTree, bytes, str],
        retention_days: Optional[int] = None,
        overwrite: bool = False,
        node_id: Optional[str] = None,
    ) -> Artifact:
        """
        Upload an artifact.

        Args:
            name: Artifact name (no glob characters or path separators)
            files: Directory tree, or a single blob stored as file `name`
            retention_days: Days to keep (default from configuration)
            overwrite: Replace an existing artifact of the same name
            node_id: Uploading node

        Returns:
            Stored Artifact metadata

        Raises:
            ArtifactExistsError: Name exists and overwrite is False
            QuotaExceededError: Size, count or retention ceiling exceeded
            StoreError: Invalid name or file path
        """
        _validate_name(name)

        tree = self._as_tree(name, files)
        size = sum(len(data) for data in tree.values())

        retention = retention_days if retention_days is not None else self.limits.default_retention_days
        if retention < 1:
            raise StoreError(f"Retention must be at least 1 day, got {retention}")
        if retention > self.limits.max_retention_days:
            raise QuotaExceededError(
                f"Retention of {retention} days exceeds the maximum of "
                f"{self.limits.max_retention_days}"
            )
        if size > self.limits.max_artifact_bytes:
            raise QuotaExceededError(
                f"Artifact '{name}' is {size} bytes, above the limit of "
                f"{self.limits.max_artifact_bytes}"
            )

        with self._lock:
            existing = self._artifacts.get(name)
            if existing is not None and not overwrite:
                raise ArtifactExistsError(name)
            if existing is None and len(self._artifacts) >= self.limits.max_artifacts_per_run:
                raise QuotaExceededError(
                    f"Run '{self.run_id}' already holds "
                    f"{self.limits.max_artifacts_per_run} artifacts"
                )

            version = existing.version + 1 if existing else 1
            prefix = f"{self._artifact_prefix(name)}v{version}/"
            for path, data in tree.items():
                self.blobs.write(prefix + path, data)

            artifact = Artifact(
                name=name,
                version=version,
                run_id=self.run_id,
                node_id=node_id,
                retention_days=retention,
                size_bytes=size,
                files=sorted(tree),
                content_ref=prefix,
            )
            if existing is not None:
                self.blobs.delete_prefix(existing.content_ref)
            self._artifacts[name] = artifact
            self._save_index()

        logger.info(
            f"Stored artifact '{name}' v{version} for run {self.run_id} "
            f"({len(tree)} file(s), {size} bytes)"
        )
        return artifact

    def get_artifact(self, pattern: str, merge_multiple: bool = False) -> Dict[str, Any]:
        """
        Download artifacts by exact name or glob pattern.

        Returns:
            name -> file tree, or (merge_multiple) one merged file tree where
            later uploads win on path collisions

        Raises:
            ArtifactNotFoundError: An exact name matched nothing
        """
        with self._lock:
            live = [a for a in self._ordered() if not a.is_expired()]
            if _is_pattern(pattern):
                matches = [a for a in live if fnmatch.fnmatchcase(a.name, pattern)]
            else:
                matches = [a for a in live if a.name == pattern]
                if not matches:
                    raise ArtifactNotFoundError(pattern)

            trees = {a.name: self._read_tree(a) for a in matches}

        if not merge_multiple:
            return trees

        merged: FileTree = {}
        for tree in trees.values():
            merged.update(tree)
        return merged

    def get_artifact_metadata(self, name: str) -> Artifact:
        with self._lock:
            artifact = self._artifacts.get(name)
        if artifact is None or artifact.is_expired():
            raise ArtifactNotFoundError(name)
        return artifact

    def list_artifacts(self) -> List[Artifact]:
        """Unexpired artifacts in upload order."""
        with self._lock:
            return [a for a in self._ordered() if not a.is_expired()]

    def delete_artifact(self, name: str) -> bool:
        """Delete an artifact. Returns False if it did not exist."""
        with self._lock:
            artifact = self._artifacts.pop(name, None)
            if artifact is None:
                return False
            self.blobs.delete_prefix(self._artifact_prefix(name))
            self._save_index()
        logger.info(f"Deleted artifact '{name}' from run {self.run_id}")
        return True

    def purge_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Delete artifacts whose retention has run out. Returns purged names."""
        with self._lock:
            expired = [a.name for a in self._artifacts.values() if a.is_expired(now)]
            for name in expired:
                del self._artifacts[name]
                self.blobs.delete_prefix(self._artifact_prefix(name))
            if expired:
                self._save_index()
        if expired:
            logger.info(f"Purged {len(expired)} expired artifact(s) from run {self.run_id}")
        return expired

    def purge(self) -> int:
        """Drop all outputs and artifacts of the run. Returns blobs deleted."""
        with self._lock:
            self._outputs.clear()
            self._sealed.clear()
            self._artifacts.clear()
            deleted = self.blobs.delete_prefix(self._run_prefix())
        logger.info(f"Purged run store {self.run_id} ({deleted} blob(s))")
        return deleted

    @staticmethod
    def stored_run_ids(blobs: BlobStorage) -> List[str]:
        """Ids of every run with an artifact index in the blob storage."""
        run_ids = []
        for key in blobs.list(_RUNS_PREFIX):
            parts = key.split("/")
            if len(parts) == 3 and parts[2] == _INDEX_NAME:
                run_ids.append(parts[1])
        return run_ids

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _run_prefix(self) -> str:
        return f"{_RUNS_PREFIX}{self.run_id}/"

    def _artifact_prefix(self, name: str) -> str:
        return f"{self._run_prefix()}artifacts/{name}/"

    def _index_key(self) -> str:
        return f"{self._run_prefix()}{_INDEX_NAME}"

    def _ordered(self) -> List[Artifact]:
        return sorted(self._artifacts.values(), key=lambda a: (a.created_at, a.name))

    def _read_tree(self, artifact: Artifact) -> FileTree:
        return {path: self.blobs.read(artifact.content_ref + path) for path in artifact.files}

    @staticmethod
    def _as_tree(name: str, files: Union[FileTree, bytes, str]) -> FileTree:
        if isinstance(files, (bytes, bytearray, str)):
            files = {name: files}
        if not isinstance(files, dict) or not files:
            raise StoreError(f"Artifact '{name}' has no files")
        tree: FileTree = {}
        for path, data in files.items():
            if isinstance(data, str):
                data = data.encode("utf-8")
            tree[_normalize_path(path)] = bytes(data)
        return tree

    def _save_index(self) -> None:
        payload = [a.model_dump(mode="json", exclude={"expires_at"}) for a in self._ordered()]
        self.blobs.write(self._index_key(), json.dumps(payload).encode("utf-8"))

    def _load_index(self) -> None:
        try:
            raw = self.blobs.read(self._index_key())
        except KeyError:
            return
        for item in json.loads(raw.decode("utf-8")):
            artifact = Artifact.model_validate(item)
            self._artifacts[artifact.name] = artifact
        logger.debug(f"Loaded {len(self._artifacts)} artifact(s) for run {self.run_id}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["RunStore", "FileTree"]
