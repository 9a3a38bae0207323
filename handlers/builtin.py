# ============================================================================
# BUILT-IN STEP HANDLERS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Handlers - Built-in steps for the in-process backend
# PURPOSE: Basic steps: echo, fail, sleep, outputs and artifact transfer
# CREATED: 14 OCT 2026
# ============================================================================
"""
Built-in Handlers

Steps every workflow can `uses:` without registering anything:

    echo               - log a message, output it as `message`
    fail               - fail the step with a message
    sleep              - wait `seconds` (honours cancellation)
    set-output         - turn every `with:` entry into a step output
    upload-artifact    - store files (inline `files`/`content` or a disk `path`)
    download-artifact  - fetch artifacts by `name`/`pattern`, optionally to disk
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Dict

from handlers.registry import (
    register_handler,
    HandlerContext,
    HandlerResult,
)

logger = logging.getLogger(__name__)


# ============================================================================
# BASIC HANDLERS
# ============================================================================

@register_handler("echo", description="Log a message and return it as output")
async def echo_handler(ctx: HandlerContext) -> HandlerResult:
    message = str(ctx.params.get("message", ""))
    logger.info(f"[{ctx.node_id}/{ctx.step_id}] {message}")
    return HandlerResult.success_result({"message": message})


@register_handler("fail", description="Fail the step")
async def fail_handler(ctx: HandlerContext) -> HandlerResult:
    message = str(ctx.params.get("message", "Step failed"))
    return HandlerResult.failure_result(message, error_type="StepFailed")


@register_handler("sleep", description="Wait for a number of seconds")
async def sleep_handler(ctx: HandlerContext) -> HandlerResult:
    seconds = float(ctx.params.get("seconds", 1))
    await asyncio.sleep(seconds)
    return HandlerResult.success_result({"slept": str(seconds)})


@register_handler("set-output", description="Expose `with:` entries as step outputs")
async def set_output_handler(ctx: HandlerContext) -> HandlerResult:
    outputs = {
        name: value if isinstance(value, str) else json.dumps(value)
        for name, value in ctx.params.items()
    }
    return HandlerResult.success_result(outputs)


# ============================================================================
# ARTIFACT HANDLERS
# ============================================================================

def _read_path(path: Path) -> Dict[str, bytes]:
    if path.is_file():
        return {path.name: path.read_bytes()}
    return {
        p.relative_to(path).as_posix(): p.read_bytes()
        for p in sorted(path.rglob("*")) if p.is_file()
    }


@register_handler("upload-artifact", description="Upload files as a run artifact")
def upload_artifact_handler(ctx: HandlerContext) -> HandlerResult:
    """
    Upload an artifact.

    Params:
        name: Artifact name (required)
        files: Mapping of relative path -> text content
        content: Single text blob (stored as file `name`)
        path: File or directory on disk
        retention-days: Days to keep
        overwrite: Replace an existing artifact
    """
    name = ctx.params.get("name")
    if not name:
        return HandlerResult.failure_result("upload-artifact requires 'name'")

    if "files" in ctx.params:
        files = ctx.params["files"]
    elif "content" in ctx.params:
        files = str(ctx.params["content"])
    elif "path" in ctx.params:
        path = Path(str(ctx.params["path"]))
        if not path.exists():
            return HandlerResult.failure_result(f"No files found at '{path}'")
        files = _read_path(path)
    else:
        return HandlerResult.failure_result("upload-artifact requires 'files', 'content' or 'path'")

    retention = ctx.params.get("retention-days")
    artifact = ctx.upload_artifact(
        str(name),
        files,
        retention_days=int(retention) if retention is not None else None,
        overwrite=str(ctx.params.get("overwrite", "false")).lower() == "true",
    )
    return HandlerResult.success_result({
        "artifact-name": artifact.name,
        "artifact-version": str(artifact.version),
        "artifact-size": str(artifact.size_bytes),
    })


@register_handler("download-artifact", description="Download run artifacts")
def download_artifact_handler(ctx: HandlerContext) -> HandlerResult:
    """
    Download artifacts.

    Params:
        name / pattern: Exact name or glob (pattern wins)
        merge-multiple: Merge all matches into one tree
        path: Directory to write files into (optional)
    """
    pattern = ctx.params.get("pattern") or ctx.params.get("name")
    if not pattern:
        return HandlerResult.failure_result("download-artifact requires 'name' or 'pattern'")

    merge = str(ctx.params.get("merge-multiple", "false")).lower() == "true"
    result = ctx.download_artifact(str(pattern), merge_multiple=merge)

    if merge:
        trees = {"": result}
    else:
        trees = result

    written = []
    target = ctx.params.get("path")
    for artifact_name, tree in trees.items():
        for rel_path, data in tree.items():
            full = f"{artifact_name}/{rel_path}" if artifact_name and len(trees) > 1 else rel_path
            written.append(full)
            if target:
                out = Path(str(target)) / full
                out.parent.mkdir(parents=True, exist_ok=True)
                out.write_bytes(data)

    logger.info(f"[{ctx.node_id}] downloaded {len(written)} file(s) matching '{pattern}'")
    return HandlerResult.success_result({
        "files": json.dumps(sorted(written)),
        "count": str(len(written)),
    })


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "echo_handler",
    "fail_handler",
    "sleep_handler",
    "set_output_handler",
    "upload_artifact_handler",
    "download_artifact_handler",
]
