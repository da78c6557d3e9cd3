"""Tests for the wiki ETag seed cache."""

import re
import time
import pytest
from unittest.mock import patch

from tiddlypom.web.cache import EtagSeedCache


class TestEtagSeedCache:
    """Test cases for EtagSeedCache."""

    def test_initial_value(self):
        cache = EtagSeedCache()
        assert re.fullmatch(r"[0-9a-f]{32}", cache.value)

    def test_refresh_changes_with_time(self):
        cache = EtagSeedCache()

        with patch("tiddlypom.web.cache.time.time", return_value=1000.0):
            first = cache.refresh()
        with patch("tiddlypom.web.cache.time.time", return_value=2000.0):
            second = cache.refresh()

        assert first != second
        assert cache.value == second

    def test_background_refresh(self):
        cache = EtagSeedCache(interval_seconds=0.05)

        with patch.object(cache, "refresh", wraps=cache.refresh) as refresh:
            cache.start()
            try:
                time.sleep(0.3)
            finally:
                cache.stop()

        assert refresh.call_count >= 2

    def test_stop_without_start(self):
        EtagSeedCache().stop()

    def test_start_twice(self):
        cache = EtagSeedCache(interval_seconds=60)
        cache.start()
        try:
            thread = cache._refresh_thread
            cache.start()
            assert cache._refresh_thread is thread
        finally:
            cache.stop()

        assert not thread.is_alive()


if __name__ == "__main__":
    pytest.main([__file__])
