"""
Unit tests for asset pagination and the already-stacked filter.

Verifies that:
1. SearchAssetSource follows 'nextPage' until the server stops returning one.
2. Stacked assets are never yielded.
3. TimeBucketAssetSource fetches every bucket listed.
4. API errors abort the listing instead of producing a partial result.
"""

import os
import sys
import unittest
import uuid
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))

from immich_stacker.core import config
from immich_stacker.core.asset_source import (
    SearchAssetSource,
    TimeBucketAssetSource,
    make_source,
)
from immich_stacker.core.immich_api import ImmichNetworkError, ImmichProtocolError


def _raw_asset(name: str, stack_count: int = 0) -> dict:
    raw = {"id": str(uuid.uuid4()), "originalFileName": name, "fileCreatedAt": "2024-01-01T00:00:00.000Z"}
    if stack_count:
        raw["stack"] = {"id": str(uuid.uuid4()), "assetCount": stack_count}
    else:
        raw["stack"] = None
    return raw


def _pages(*pages):
    """Build metadata() results: each page links to the next, the last has no nextPage."""
    results = []
    for index, items in enumerate(pages, start=1):
        next_page = str(index + 1) if index < len(pages) else None
        results.append({"items": items, "nextPage": next_page})
    return results


class TestSearchAssetSource(unittest.TestCase):

    def setUp(self):
        self.api = MagicMock()

    def test_follows_next_page_until_absent(self):
        self.api.search.metadata.side_effect = _pages(
            [_raw_asset("a.jpg"), _raw_asset("b.jpg")],
            [_raw_asset("c.jpg")],
            [_raw_asset("d.jpg")],
        )
        source = SearchAssetSource(self.api)

        names = [a.original_file_name for a in source.fetch_all(page_size=2)]

        self.assertEqual(names, ["a.jpg", "b.jpg", "c.jpg", "d.jpg"])
        pages = [c.kwargs["page"] for c in self.api.search.metadata.call_args_list]
        self.assertEqual(pages, [1, 2, 3])
        for c in self.api.search.metadata.call_args_list:
            self.assertEqual(c.kwargs["size"], 2)
            self.assertTrue(c.kwargs["with_stacked"])

    def test_stacked_assets_are_dropped(self):
        self.api.search.metadata.side_effect = _pages(
            [_raw_asset("a.jpg"), _raw_asset("b.jpg", stack_count=2), _raw_asset("c.jpg")],
        )
        source = SearchAssetSource(self.api)

        names = [a.original_file_name for a in source.fetch_all()]

        self.assertEqual(names, ["a.jpg", "c.jpg"])
        self.assertEqual(source.total, 3)
        self.assertEqual(source.skipped_stacked, 1)

    def test_empty_library(self):
        self.api.search.metadata.side_effect = _pages([])
        self.assertEqual(list(SearchAssetSource(self.api).fetch_all()), [])

    def test_error_on_later_page_propagates(self):
        self.api.search.metadata.side_effect = [
            {"items": [_raw_asset("a.jpg")], "nextPage": "2"},
            ImmichProtocolError("expected HTTP 200, got 500", status_code=500),
        ]
        with self.assertRaises(ImmichProtocolError):
            list(SearchAssetSource(self.api).fetch_all())

    def test_malformed_asset_is_a_protocol_error(self):
        self.api.search.metadata.side_effect = _pages([{"id": "nope", "originalFileName": "a.jpg"}])
        with self.assertRaises(ImmichProtocolError):
            list(SearchAssetSource(self.api).fetch_all())

    def test_invalid_next_page_is_a_protocol_error(self):
        self.api.search.metadata.side_effect = [{"items": [], "nextPage": "next"}]
        with self.assertRaises(ImmichProtocolError):
            list(SearchAssetSource(self.api).fetch_all())

    def test_generator_is_lazy(self):
        self.api.search.metadata.side_effect = _pages([_raw_asset("a.jpg")])
        SearchAssetSource(self.api).fetch_all()
        self.api.search.metadata.assert_not_called()


class TestTimeBucketAssetSource(unittest.TestCase):

    def test_fetches_every_bucket(self):
        api = MagicMock()
        api.timeline.get_buckets.return_value = [
            {"timeBucket": "2024-02-01T00:00:00.000Z", "count": 2},
            {"timeBucket": "2024-01-01T00:00:00.000Z", "count": 1},
        ]
        api.timeline.get_bucket.side_effect = [
            [_raw_asset("a.jpg"), _raw_asset("b.jpg", stack_count=3)],
            [_raw_asset("c.jpg")],
        ]
        source = TimeBucketAssetSource(api)

        names = [a.original_file_name for a in source.fetch_all()]

        self.assertEqual(names, ["a.jpg", "c.jpg"])
        buckets = [c.args[0] for c in api.timeline.get_bucket.call_args_list]
        self.assertEqual(buckets, ["2024-02-01T00:00:00.000Z", "2024-01-01T00:00:00.000Z"])
        self.assertEqual(source.total, 3)

    def test_network_error_propagates(self):
        api = MagicMock()
        api.timeline.get_buckets.side_effect = ImmichNetworkError("connection refused")
        with self.assertRaises(ImmichNetworkError):
            list(TimeBucketAssetSource(api).fetch_all())

    def test_bucket_without_name(self):
        api = MagicMock()
        api.timeline.get_buckets.return_value = [{"count": 1}]
        with self.assertRaises(ImmichProtocolError):
            list(TimeBucketAssetSource(api).fetch_all())


class TestMakeSource(unittest.TestCase):

    def test_known_sources(self):
        api = MagicMock()
        self.assertIsInstance(make_source(config.SOURCE_SEARCH, api), SearchAssetSource)
        self.assertIsInstance(make_source(config.SOURCE_TIMEBUCKET, api), TimeBucketAssetSource)

    def test_unknown_source(self):
        with self.assertRaises(ValueError):
            make_source("albums", MagicMock())


if __name__ == "__main__":
    unittest.main()
