"""
Asset Sources
=============

Fetch the full set of assets the Immich server knows about and yield them as
a flat sequence of `Asset` objects.

Two listing styles are supported:

- SearchAssetSource: paginated POST /api/search/metadata, following
  'nextPage' until the server stops returning one.
- TimeBucketAssetSource: GET /api/timeline/buckets, then one request per
  monthly bucket.

Assets that already belong to a stack are dropped before they are yielded.
Any API error propagates: an incomplete asset listing would silently
under-group assets, so there is no partial-results mode.
"""

import logging
from typing import Any, Dict, Iterable, Iterator

from immich_stacker.core import config
from immich_stacker.core.immich_api import ImmichAPI, ImmichProtocolError
from immich_stacker.core.models import Asset

logger = logging.getLogger(__name__)


class AssetSource:
    """
    Base class for asset sources.

    Subclasses implement `_iter_raw`, yielding raw asset dicts from the API.
    After (or during) iteration, `total` holds the number of assets received
    and `skipped_stacked` the number dropped because they were already stacked.
    """

    def __init__(self, api: ImmichAPI):
        self.api = api
        self.total = 0
        self.skipped_stacked = 0

    def fetch_all(self, page_size: int = config.DEFAULT_PAGE_SIZE) -> Iterator[Asset]:
        """
        Yield every unstacked asset.

        The returned generator is single-use: iterating again requires a new
        call (and a new round of requests).

        Raises:
            ImmichNetworkError: On transport failure
            ImmichProtocolError: On an unexpected status or malformed asset
        """
        self.total = 0
        self.skipped_stacked = 0
        for raw in self._iter_raw(page_size):
            self.total += 1
            asset = self._parse(raw)
            if asset.is_stacked:
                self.skipped_stacked += 1
                logger.debug(f"Skipping already stacked asset {asset.original_file_name} ({asset.id})")
                continue
            yield asset

        logger.info(f"Retrieved {self.total} assets ({self.skipped_stacked} already stacked)")

    def _iter_raw(self, page_size: int) -> Iterable[Dict[str, Any]]:
        raise NotImplementedError

    @staticmethod
    def _parse(raw: Dict[str, Any]) -> Asset:
        try:
            return Asset.from_api(raw)
        except (KeyError, TypeError, ValueError) as e:
            raise ImmichProtocolError(f"Malformed asset in listing: {e}") from e


class SearchAssetSource(AssetSource):
    """Pages through POST /api/search/metadata."""

    def _iter_raw(self, page_size: int) -> Iterable[Dict[str, Any]]:
        page = 1
        while True:
            logger.debug(f"Requesting asset page {page} (size {page_size})")
            result = self.api.search.metadata(page=page, size=page_size, with_stacked=True)
            yield from result['items']

            next_page = result.get('nextPage')
            if not next_page:
                break
            try:
                page = int(next_page)
            except (TypeError, ValueError) as e:
                raise ImmichProtocolError(f"Invalid nextPage value: {next_page!r}") from e


class TimeBucketAssetSource(AssetSource):
    """Lists monthly time buckets, then fetches each bucket in turn."""

    def _iter_raw(self, page_size: int) -> Iterable[Dict[str, Any]]:
        logger.info("Requesting all time buckets")
        buckets = self.api.timeline.get_buckets(with_stacked=True)

        for bucket in buckets:
            time_bucket = bucket.get('timeBucket')
            expected = bucket.get('count')
            if not time_bucket:
                raise ImmichProtocolError(f"Time bucket without a name: {bucket!r}")

            logger.debug(f"Requesting time bucket {time_bucket} ({expected} assets)")
            assets = self.api.timeline.get_bucket(time_bucket, with_stacked=True)
            logger.debug(f"Retrieved time bucket {time_bucket}: expected {expected}, got {len(assets)}")
            yield from assets


def make_source(name: str, api: ImmichAPI) -> AssetSource:
    """Build the asset source selected by the 'source' setting."""
    if name == config.SOURCE_SEARCH:
        return SearchAssetSource(api)
    if name == config.SOURCE_TIMEBUCKET:
        return TimeBucketAssetSource(api)
    raise ValueError(f"Unknown asset source: {name}")
