"""Conflict resolution between cached and remote documents.

``resolve_conflict`` is the single entry point used by every sync path, so a
configured strategy is applied the same way everywhere.

Built-in policies:
  * ``local`` - the cached document always wins
  * ``remote`` - the remote document always wins
  * ``merge`` - field-level last-writer-wins by per-field timestamp
  * ``manual`` - divergent documents are left unresolved for the caller
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from flipsync.models.cache_models import ConflictStrategy
from flipsync.services.mappers import parse_datetime, to_iso

logger = logging.getLogger(__name__)

# Fields that describe a document rather than its content
METADATA_FIELDS = ("updatedAt", "createdAt", "fieldTimestamps")

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass
class Resolution:
    """Outcome of resolving one local/remote pair."""
    document: Optional[Dict[str, Any]]
    source: str  # identical, local, remote, merged or unresolved

    @property
    def resolved(self) -> bool:
        return self.document is not None


class ConflictPolicy(ABC):
    """Base class for conflict resolution policies."""

    strategy: ConflictStrategy

    @abstractmethod
    def resolve(self, local: Dict[str, Any], remote: Dict[str, Any]) -> Resolution:
        """Return the surviving document for a divergent pair."""


class LocalWins(ConflictPolicy):
    """Always keep the cached version."""

    strategy = ConflictStrategy.LOCAL

    def resolve(self, local: Dict[str, Any], remote: Dict[str, Any]) -> Resolution:
        return Resolution(local, "local")


class RemoteWins(ConflictPolicy):
    """Always accept the remote version."""

    strategy = ConflictStrategy.REMOTE

    def resolve(self, local: Dict[str, Any], remote: Dict[str, Any]) -> Resolution:
        return Resolution(remote, "remote")


class MergeFields(ConflictPolicy):
    """Field-level merge; each differing field goes to its later writer.

    A field's time is its entry in ``fieldTimestamps``, falling back to the
    document's ``updatedAt``. Ties go to the remote value. Fields present on
    one side only are kept.
    """

    strategy = ConflictStrategy.MERGE

    def resolve(self, local: Dict[str, Any], remote: Dict[str, Any]) -> Resolution:
        local_updated = _document_time(local)
        remote_updated = _document_time(remote)
        local_stamps = local.get("fieldTimestamps") or {}
        remote_stamps = remote.get("fieldTimestamps") or {}

        merged: Dict[str, Any] = {}
        merged_stamps: Dict[str, str] = {}
        keys = list(remote) + [key for key in local if key not in remote]
        for key in keys:
            if key in METADATA_FIELDS:
                continue
            if key not in local:
                merged[key] = remote[key]
                continue
            if key not in remote:
                merged[key] = local[key]
                continue

            local_time = _field_time(local_stamps, key, local_updated)
            remote_time = _field_time(remote_stamps, key, remote_updated)
            if local[key] == remote[key] or local_time > remote_time:
                merged[key] = local[key]
            else:
                merged[key] = remote[key]

            if key in local_stamps or key in remote_stamps:
                merged_stamps[key] = to_iso(max(local_time, remote_time))

        merged["updatedAt"] = to_iso(max(local_updated, remote_updated))
        if "createdAt" in remote or "createdAt" in local:
            merged["createdAt"] = remote.get("createdAt", local.get("createdAt"))
        if merged_stamps:
            merged["fieldTimestamps"] = merged_stamps
        return Resolution(merged, "merged")


class ManualReview(ConflictPolicy):
    """Never auto-resolve; the caller decides."""

    strategy = ConflictStrategy.MANUAL

    def resolve(self, local: Dict[str, Any], remote: Dict[str, Any]) -> Resolution:
        return Resolution(None, "unresolved")


_POLICIES: Dict[ConflictStrategy, ConflictPolicy] = {
    policy.strategy: policy for policy in (LocalWins(), RemoteWins(), MergeFields(), ManualReview())
}


def get_policy(strategy: ConflictStrategy | str) -> ConflictPolicy:
    """Look up a policy by strategy or strategy name."""
    try:
        return _POLICIES[ConflictStrategy(strategy)]
    except ValueError as e:
        raise ValueError(
            f"Unknown conflict strategy '{strategy}'. "
            f"Available: {', '.join(s.value for s in ConflictStrategy)}"
        ) from e


def resolve_conflict(
    local: Dict[str, Any],
    remote: Optional[Dict[str, Any]],
    strategy: ConflictStrategy | str,
) -> Resolution:
    """Resolve a cached document against its remote counterpart."""
    if remote is None:
        return Resolution(local, "local")
    if content_equal(local, remote):
        return Resolution(local, "identical")
    return get_policy(strategy).resolve(local, remote)


def content_equal(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    """Check if two documents carry the same content, ignoring metadata."""
    a_content = {k: v for k, v in a.items() if k not in METADATA_FIELDS}
    b_content = {k: v for k, v in b.items() if k not in METADATA_FIELDS}
    try:
        return json.dumps(a_content, sort_keys=True) == json.dumps(b_content, sort_keys=True)
    except (TypeError, ValueError):
        return a_content == b_content


def _document_time(doc: Dict[str, Any]) -> datetime:
    try:
        return parse_datetime(doc.get("updatedAt") or doc.get("createdAt")) or _EPOCH
    except ValueError:
        return _EPOCH


def _field_time(stamps: Dict[str, Any], key: str, default: datetime) -> datetime:
    try:
        return parse_datetime(stamps.get(key)) or default
    except ValueError:
        return default
