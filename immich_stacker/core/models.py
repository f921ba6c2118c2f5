"""
Domain Models
=============

Plain dataclasses shared by the asset source, the stack assembler and the CLI:

- Asset: one remote media item as returned by the listing calls
- CandidateStack: a prospective stack built during one run
- StackStats: run statistics, reported once at the end of a run
"""

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent by Immich ('2024-01-01T10:00:00.000Z')."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class Asset:
    """
    Represents one asset in Immich.

    Attributes:
        id: Asset UUID
        original_file_name: File name at upload time (e.g. 'IMG_0001.jpg')
        stack_count: Number of assets in the stack this asset belongs to (0 = unstacked)
        stack_id: Identifier of that stack, if the server reports one
        file_created_at: Creation timestamp of the original file
    """
    id: uuid.UUID
    original_file_name: str
    stack_count: int = 0
    stack_id: Optional[str] = None
    file_created_at: Optional[datetime] = None

    @property
    def is_stacked(self) -> bool:
        return self.stack_count > 0 or self.stack_id is not None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Asset":
        """
        Build an Asset from an asset response object.

        Both stack representations are understood: the current nested
        ``stack`` object (``{"id": ..., "assetCount": n}``) and the older flat
        ``stackCount``/``stackParentId`` fields.

        Raises:
            KeyError: If the id or file name is missing
            ValueError: If the id is not a UUID or the timestamp is malformed
        """
        stack = data.get("stack")
        stack_count = 0
        stack_id = None
        if stack:
            stack_count = int(stack.get("assetCount") or 0)
            stack_id = stack.get("id")
        elif data.get("stackCount"):
            stack_count = int(data["stackCount"])
        if stack_id is None and data.get("stackParentId"):
            stack_id = data["stackParentId"]

        return cls(
            id=uuid.UUID(data["id"]),
            original_file_name=data["originalFileName"],
            stack_count=stack_count,
            stack_id=stack_id,
            file_created_at=_parse_timestamp(data.get("fileCreatedAt")),
        )


@dataclass
class CandidateStack:
    """
    A prospective stack, keyed by the grouping key derived from file names.

    Members keep insertion order and never contain duplicates. A later parent
    match replaces the current parent; the replaced id is kept in
    `displaced_parents` so the ambiguity can be reported.
    """
    key: str
    ids: List[uuid.UUID] = field(default_factory=list)
    parent: Optional[uuid.UUID] = None
    displaced_parents: List[uuid.UUID] = field(default_factory=list)

    def add_member(self, asset_id: uuid.UUID) -> bool:
        """Append a member id. Returns False if it was already present."""
        if asset_id in self.ids:
            return False
        self.ids.append(asset_id)
        return True

    def set_parent(self, asset_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Make `asset_id` the parent, returning the parent it displaced (if any)."""
        previous = self.parent
        self.parent = asset_id
        if previous is not None and previous != asset_id:
            self.displaced_parents.append(previous)
            return previous
        return None

    @property
    def stackable(self) -> bool:
        return self.parent is not None and len(self.ids) > 0

    @property
    def has_parent_conflict(self) -> bool:
        return bool(self.displaced_parents)

    def ordered_ids(self) -> List[uuid.UUID]:
        """Parent first, followed by every member that is not the parent."""
        if self.parent is None:
            raise ValueError(f"Candidate '{self.key}' has no parent")
        ordered = [self.parent]
        for asset_id in self.ids:
            if asset_id not in ordered:
                ordered.append(asset_id)
        return ordered

    def member_ids(self) -> List[uuid.UUID]:
        """Members excluding the parent, in insertion order."""
        return [asset_id for asset_id in self.ids if asset_id != self.parent]


@dataclass
class StackStats:
    """Counters accumulated over one run."""
    stackable: int = 0
    not_stackable: int = 0
    succeeded: int = 0
    failed: int = 0

    # Fetch-side counters
    total_assets: int = 0
    matched: int = 0
    ignored: int = 0

    @property
    def candidates(self) -> int:
        return self.stackable + self.not_stackable

    def merge(self, other: "StackStats") -> "StackStats":
        """Add another set of counters into this one and return self."""
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    def as_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
