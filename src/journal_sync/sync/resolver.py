"""
resolver.py - Record-level Last-Write-Wins conflict resolution.

Two pure decision functions:
- resolve(): what to do with a remote metadata document during download
- resolve_upload(): what to do with an unsynced local record before upload

Whole records win or lose; fields are never merged.
"""

from enum import Enum
from typing import Any

from journal_sync.models import is_deleted
from journal_sync.utils.timestamps import parse_iso


class Resolution(Enum):
    INSERT_REMOTE = "insert_remote"
    KEEP_LOCAL = "keep_local"
    SKIP = "skip"


class UploadDecision(Enum):
    PUSH = "push"
    PULL_REMOTE = "pull_remote"
    MARK_SYNCED = "mark_synced"


def resolve(local: Any | None, remote: Any) -> Resolution:
    """
    Decide how a remote metadata document is applied locally.

    Rules, in order:
    1. Unknown locally: insert unless the remote is a tombstone
    2. Local has unsynced changes: keep local, it will be uploaded
    3. Remote strictly newer: insert remote
    4. Otherwise skip (equal timestamps included)
    """
    if local is None:
        return Resolution.SKIP if is_deleted(remote) else Resolution.INSERT_REMOTE

    if not local.is_synced:
        return Resolution.KEEP_LOCAL

    if parse_iso(remote.updated_at) > parse_iso(local.updated_at):
        return Resolution.INSERT_REMOTE

    return Resolution.SKIP


def resolve_upload(local: Any, remote: Any | None) -> UploadDecision:
    """
    Decide whether an unsynced local record is pushed.

    The remote copy is compared just before upload, so a newer edit
    made on another device is not overwritten.
    """
    if remote is None:
        return UploadDecision.PUSH

    local_time = parse_iso(local.updated_at)
    remote_time = parse_iso(remote.updated_at)
    if local_time > remote_time:
        return UploadDecision.PUSH
    if remote_time > local_time:
        return UploadDecision.PULL_REMOTE
    return UploadDecision.MARK_SYNCED
