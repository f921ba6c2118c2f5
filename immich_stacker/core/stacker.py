"""
Stack Assembly Engine
=====================

Turns a sequence of unstacked assets into Immich stacks.

Workflow:
1. build_candidates: every asset whose file name matches the match pattern is
   assigned a grouping key (the file name with the matched text removed) and
   becomes either the parent of that group (parent pattern matches) or one of
   its members.
2. classify_and_apply: a candidate with a parent and at least one member is
   stackable and gets exactly one stacking call; anything else is skipped.
   A failed call is counted and the run moves on.

Key Components:
- derive_key: pure grouping-key function, independent of any HTTP concern
- StackAssembler: candidate accumulation, classification and apply
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from immich_stacker.core import config
from immich_stacker.core.immich_api import ImmichAPI, ImmichAPIError
from immich_stacker.core.models import Asset, CandidateStack, StackStats
from immich_stacker.core.settings import StackerConfig

logger = logging.getLogger(__name__)

# Outcome of a single apply call
APPLIED = "applied"
FAILED = "failed"
SKIPPED = "skipped"  # read-only run


def derive_key(
    filename: str,
    match_pattern: re.Pattern,
    compare_created: bool = False,
    created_at: Optional[datetime] = None
) -> str:
    """
    Compute the grouping key for a file name.

    Every substring matching `match_pattern` is deleted, so burst variants
    such as 'IMG_0001.jpg' and 'IMG_0001_2.jpg' share the stem left behind.
    With `compare_created`, the creation timestamp (in local time) is
    appended so identical names from unrelated shoots stay apart.

    Args:
        filename: Original file name of the asset
        match_pattern: Compiled match pattern
        compare_created: Append the creation timestamp to the key
        created_at: Creation timestamp of the asset

    Returns:
        The grouping key
    """
    key = match_pattern.sub("", filename)
    if compare_created:
        stamp = created_at.astimezone().isoformat(sep=" ") if created_at is not None else "None"
        key = f"{key}_{stamp}"
    return key


def choose_mode(mode: str, version: Optional[Dict[str, int]]) -> str:
    """Resolve 'auto' to 'create' or 'update' from the server version."""
    if mode != config.MODE_AUTO:
        return mode
    if version is None:
        return config.MODE_CREATE
    current = (version['major'], version['minor'], version['patch'])
    return config.MODE_CREATE if current >= config.STACKS_API_MIN_VERSION else config.MODE_UPDATE


class StackAssembler:
    """
    Builds candidate stacks from assets and persists the stackable ones.

    The assembler owns all per-run state; nothing is shared across runs.
    """

    def __init__(self, api: Optional[ImmichAPI], settings: StackerConfig, mode: Optional[str] = None):
        """
        Args:
            api: Immich client used for the apply step (may be None for a
                 read-only run)
            settings: Validated run configuration
            mode: Resolved stacking mode ('create' or 'update'); defaults to
                  the configured mode
        """
        if settings.match_pattern is None or settings.parent_pattern is None:
            raise ValueError("Settings must be validated before assembling stacks")
        if api is None and not settings.read_only:
            raise ValueError("An API client is required unless the run is read-only")

        self.api = api
        self.settings = settings
        self.mode = mode or settings.mode
        if self.mode not in (config.MODE_CREATE, config.MODE_UPDATE):
            raise ValueError(f"Unresolved stacking mode: {self.mode}")

        self.stats = StackStats()

    # ------------------------------------------------------------------------
    # CANDIDATES
    # ------------------------------------------------------------------------

    def build_candidates(self, assets: Iterable[Asset]) -> Dict[str, CandidateStack]:
        """
        Group matching assets by their derived key.

        Assets whose file name does not match are ignored (and counted as
        such). Dict insertion order follows the asset sequence.
        """
        match = self.settings.match_pattern
        parent = self.settings.parent_pattern
        candidates: Dict[str, CandidateStack] = {}

        for asset in assets:
            self.stats.total_assets += 1
            filename = asset.original_file_name

            if not match.search(filename):
                self.stats.ignored += 1
                continue
            self.stats.matched += 1

            key = derive_key(filename, match, self.settings.compare_created, asset.file_created_at)
            candidate = candidates.get(key)
            if candidate is None:
                candidate = candidates[key] = CandidateStack(key=key)

            if parent.search(filename):
                displaced = candidate.set_parent(asset.id)
                if displaced is not None:
                    logger.warning(
                        f"Several parents for '{key}': {asset.id} ({filename}) replaces {displaced}"
                    )
            elif not candidate.add_member(asset.id):
                logger.debug(f"Duplicate asset {asset.id} for '{key}' ignored")

        logger.info(
            f"Matched {self.stats.matched} of {self.stats.total_assets} assets "
            f"into {len(candidates)} candidate stacks"
        )
        return candidates

    def is_stackable(self, candidate: CandidateStack) -> bool:
        if not candidate.stackable:
            return False
        if self.settings.strict_parents and candidate.has_parent_conflict:
            logger.warning(f"Not stacking '{candidate.key}': several assets matched the parent pattern")
            return False
        return True

    # ------------------------------------------------------------------------
    # APPLY
    # ------------------------------------------------------------------------

    def classify_and_apply(self, candidates: Dict[str, CandidateStack]) -> StackStats:
        """
        Classify every candidate and issue one stacking call per stackable one.

        Returns:
            The run statistics (also kept on `self.stats`)
        """
        stackable: List[CandidateStack] = []
        for candidate in candidates.values():
            if self.is_stackable(candidate):
                self.stats.stackable += 1
                stackable.append(candidate)
            else:
                logger.debug(f"Skipped '{candidate.key}'")
                self.stats.not_stackable += 1

        if self.settings.workers > 1 and len(stackable) > 1:
            with ThreadPoolExecutor(max_workers=self.settings.workers, thread_name_prefix="stacker") as pool:
                outcomes = list(pool.map(self.apply, stackable))
        else:
            outcomes = [self.apply(candidate) for candidate in stackable]

        # Merged on this thread once every call has returned
        for _, outcome in outcomes:
            if outcome == APPLIED:
                self.stats.succeeded += 1
            elif outcome == FAILED:
                self.stats.failed += 1

        return self.stats

    def apply(self, candidate: CandidateStack) -> Tuple[str, str]:
        """
        Persist one stackable candidate.

        Never raises for API errors; the failure is logged and reported in
        the returned (key, outcome) pair.
        """
        if self.settings.read_only:
            logger.info(f"Would stack '{candidate.key}' ({len(candidate.ordered_ids())} assets)")
            return candidate.key, SKIPPED

        logger.debug(f"Stacking '{candidate.key}'")
        try:
            if self.mode == config.MODE_CREATE:
                self.api.stacks.create(candidate.ordered_ids())
            else:
                self.api.assets.update_stack_parent(candidate.member_ids(), candidate.parent)
        except ImmichAPIError as e:
            logger.error(f"Failed to stack '{candidate.key}': {e}")
            return candidate.key, FAILED

        logger.info(f"Created stack '{candidate.key}'")
        return candidate.key, APPLIED

    def run(self, assets: Iterable[Asset]) -> StackStats:
        """Build candidates from `assets`, then classify and apply them."""
        return self.classify_and_apply(self.build_candidates(assets))
