# ============================================================================
# BLOB STORAGE INFRASTRUCTURE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Infrastructure - Artifact blob persistence
# PURPOSE: Byte storage behind the run-scoped artifact store
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Blob Storage Infrastructure

Provides BlobStorage implementations for artifact content:
- MemoryBlobStorage: process-local dict (tests, single-process use)
- LocalBlobStorage: files under a root directory (survives restarts)
- AzureBlobStorage: one Azure Blob Storage container (shared by instances)

Keys are '/'-separated paths such as
    runs/<run_id>/artifacts/<name>/v<version>/<relative path>

All implementations are thread-safe; sync step handlers run on worker
threads and upload through the same store.
"""

import logging
import os
import shutil
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER = "runflow-artifacts"


# ============================================================================
# BLOB STORAGE INTERFACE
# ============================================================================

class BlobStorage(ABC):
    """Abstract key -> bytes storage."""

    @abstractmethod
    def write(self, key: str, data: bytes) -> None:
        """Store bytes under a key (replacing any existing value)."""

    @abstractmethod
    def read(self, key: str) -> bytes:
        """
        Read bytes for a key.

        Raises:
            KeyError: If the key does not exist
        """

    @abstractmethod
    def list(self, prefix: str) -> List[str]:
        """List keys starting with prefix, sorted."""

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Delete every key under a prefix. Returns number deleted."""

    def exists(self, key: str) -> bool:
        """Check whether a key exists."""
        return key in self.list(key)


# ============================================================================
# IN-MEMORY STORAGE
# ============================================================================

class MemoryBlobStorage(BlobStorage):
    """Dict-backed blob storage."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            self._blobs[key] = bytes(data)

    def read(self, key: str) -> bytes:
        with self._lock:
            if key not in self._blobs:
                raise KeyError(f"Blob not found: {key}")
            return self._blobs[key]

    def list(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(k for k in self._blobs if k.startswith(prefix))

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._blobs if k.startswith(prefix)]
            for key in keys:
                del self._blobs[key]
        return len(keys)


# ============================================================================
# LOCAL FILESYSTEM STORAGE
# ============================================================================

class LocalBlobStorage(BlobStorage):
    """
    Filesystem-backed blob storage.

    Usage:
        storage = LocalBlobStorage("/var/lib/runflow/artifacts")
        storage.write("runs/run-1/artifacts/dist/v1/app.whl", data)
    """

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"LocalBlobStorage rooted at {self.root}")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)

    def read(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise KeyError(f"Blob not found: {key}")
        return path.read_bytes()

    def list(self, prefix: str) -> List[str]:
        keys = []
        for path in self.root.rglob("*"):
            if path.is_file() and not path.name.endswith(".tmp"):
                key = path.relative_to(self.root).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)

    def delete_prefix(self, prefix: str) -> int:
        if any(part in (".", "..") for part in prefix.split("/")):
            raise ValueError(f"Blob prefix must not contain dot segments: {prefix}")
        keys = self.list(prefix)
        with self._lock:
            for key in keys:
                self._path(key).unlink(missing_ok=True)
            directory = self._path(prefix.rstrip("/")) if prefix.strip("/") else None
            if directory is not None and directory.is_dir():
                shutil.rmtree(directory, ignore_errors=True)
        return len(keys)


# ============================================================================
# AZURE BLOB STORAGE
# ============================================================================

class AzureBlobStorage(BlobStorage):
    """
    Azure Blob Storage backed blob storage.

    Keys map one-to-one onto blob names inside a single container.
    Authenticates with ManagedIdentityCredential when AZURE_CLIENT_ID is
    set, otherwise DefaultAzureCredential.

    Usage:
        storage = AzureBlobStorage(account_name="runflowartifacts", container="artifacts")
        storage.write("runs/run-1/artifacts/dist/v1/app.whl", data)
    """

    def __init__(
        self,
        account_name: Optional[str] = None,
        container: str = DEFAULT_CONTAINER,
        container_client=None,
    ):
        if not account_name and container_client is None:
            raise ValueError(
                "AzureBlobStorage requires an account_name. "
                "Set ARTIFACT_STORAGE_ACCOUNT to the storage account name."
            )
        self.account_name = account_name
        self.container = container

        # Lazy initialization of Azure clients
        self._credential = None
        self._blob_service = None
        self._container_client = container_client
        self._client_lock = threading.Lock()

        logger.info(f"AzureBlobStorage initialized for {account_name}/{container}")

    # ========================================================================
    # AZURE CLIENT INITIALIZATION
    # ========================================================================

    def _get_credential(self):
        """Get Azure credential (lazy initialization)."""
        if self._credential is None:
            client_id = os.environ.get("AZURE_CLIENT_ID")
            if client_id:
                from azure.identity import ManagedIdentityCredential
                self._credential = ManagedIdentityCredential(client_id=client_id)
                logger.debug("ManagedIdentityCredential initialized with client_id")
            else:
                from azure.identity import DefaultAzureCredential
                self._credential = DefaultAzureCredential()
                logger.debug("DefaultAzureCredential initialized")
        return self._credential

    def _get_blob_service(self):
        """Get BlobServiceClient (lazy initialization)."""
        if self._blob_service is None:
            from azure.storage.blob import BlobServiceClient
            account_url = f"https://{self.account_name}.blob.core.windows.net"
            self._blob_service = BlobServiceClient(
                account_url=account_url,
                credential=self._get_credential(),
            )
            logger.debug(f"BlobServiceClient initialized for {account_url}")
        return self._blob_service

    def _get_container_client(self):
        """
        Get the cached container client.

        Thread-safe with double-checked locking.
        """
        if self._container_client is not None:
            return self._container_client

        with self._client_lock:
            if self._container_client is None:
                self._container_client = self._get_blob_service().get_container_client(
                    self.container
                )
                logger.debug(f"Created container client for: {self.container}")
            return self._container_client

    # ========================================================================
    # BLOB OPERATIONS
    # ========================================================================

    def write(self, key: str, data: bytes) -> None:
        self._get_container_client().upload_blob(name=key, data=bytes(data), overwrite=True)

    def read(self, key: str) -> bytes:
        from azure.core.exceptions import ResourceNotFoundError

        blob_client = self._get_container_client().get_blob_client(key)
        try:
            return blob_client.download_blob().readall()
        except ResourceNotFoundError:
            raise KeyError(f"Blob not found: {key}")

    def list(self, prefix: str) -> List[str]:
        blobs = self._get_container_client().list_blobs(name_starts_with=prefix)
        return sorted(blob.name for blob in blobs)

    def delete_prefix(self, prefix: str) -> int:
        from azure.core.exceptions import ResourceNotFoundError

        container_client = self._get_container_client()
        deleted = 0
        for name in self.list(prefix):
            try:
                container_client.delete_blob(name)
                deleted += 1
            except ResourceNotFoundError:
                logger.debug(f"Blob already gone: {name}")
        return deleted

    def exists(self, key: str) -> bool:
        return self._get_container_client().get_blob_client(key).exists()


# ============================================================================
# FACTORY
# ============================================================================

def create_blob_storage(root: Optional[str] = None) -> BlobStorage:
    """
    Create blob storage from configuration.

    Selection order:
    1. Explicit root directory -> LocalBlobStorage
    2. ARTIFACT_STORAGE_ACCOUNT -> AzureBlobStorage (container from
       ARTIFACT_STORAGE_CONTAINER)
    3. ARTIFACT_STORAGE_DIR -> LocalBlobStorage
    4. In-memory storage
    """
    if root:
        return LocalBlobStorage(root)

    account_name = os.getenv("ARTIFACT_STORAGE_ACCOUNT")
    if account_name:
        container = os.getenv("ARTIFACT_STORAGE_CONTAINER", DEFAULT_CONTAINER)
        return AzureBlobStorage(account_name=account_name, container=container)

    root = os.getenv("ARTIFACT_STORAGE_DIR")
    if root:
        return LocalBlobStorage(root)
    logger.info("No artifact storage configured, using in-memory blob storage")
    return MemoryBlobStorage()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "BlobStorage",
    "MemoryBlobStorage",
    "LocalBlobStorage",
    "AzureBlobStorage",
    "DEFAULT_CONTAINER",
    "create_blob_storage",
]
