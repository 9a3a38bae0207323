# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Infrastructure - Blob storage
# PURPOSE: Byte storage behind the run artifact store
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Infrastructure module.

Provides:
- BlobStorage: key -> bytes contract used by RunStore
- MemoryBlobStorage / LocalBlobStorage: in-process and on-disk backends
- AzureBlobStorage: Azure Blob Storage container backend
- create_blob_storage: choose a backend from ARTIFACT_STORAGE_ACCOUNT
  or ARTIFACT_STORAGE_DIR

Usage:
    from infrastructure import create_blob_storage

    blobs = create_blob_storage()
    blobs.write("runs/run-1/artifacts/dist/v1/app.tar", data)
"""

from infrastructure.storage import (
    BlobStorage,
    MemoryBlobStorage,
    LocalBlobStorage,
    AzureBlobStorage,
    create_blob_storage,
)

__all__ = [
    "BlobStorage",
    "MemoryBlobStorage",
    "LocalBlobStorage",
    "AzureBlobStorage",
    "create_blob_storage",
]
