"""Tests for KeyPool."""

import threading

import pytest

from ollama_proxy.gateway.errors import ConfigurationError
from ollama_proxy.gateway.key_pool import KeyPool


class TestKeyPool:
    """Tests for the rotation cursor."""

    def test_starts_at_first_key(self):
        """A fresh pool points at the first key."""
        pool = KeyPool(["key-a", "key-b", "key-c"])

        assert pool.index == 0
        assert pool.current() == "key-a"
        assert len(pool) == 3

    def test_rotate_advances_and_returns_new_key(self):
        """rotate() moves the cursor forward and returns the new active key."""
        pool = KeyPool(["key-a", "key-b"])

        assert pool.rotate() == "key-b"
        assert pool.current() == "key-b"
        assert pool.index == 1

    def test_rotate_wraps_around(self):
        """Rotating past the last key wraps to the first."""
        pool = KeyPool(["key-a", "key-b"])

        pool.rotate()
        assert pool.rotate() == "key-a"
        assert pool.index == 0

    @pytest.mark.parametrize("count,rotations", [(1, 5), (2, 7), (3, 9), (4, 10)])
    def test_index_is_rotations_mod_count(self, count, rotations):
        """After n rotations the cursor sits at n mod k."""
        pool = KeyPool([f"key-{i}" for i in range(count)])

        for _ in range(rotations):
            pool.rotate()

        assert pool.index == rotations % count

    def test_single_key_rotation_is_noop(self):
        """With one key, rotation keeps returning the same key."""
        pool = KeyPool(["only"])

        assert pool.rotate() == "only"
        assert pool.index == 0

    def test_empty_strings_are_dropped(self):
        """Blank entries never become usable keys."""
        pool = KeyPool(["", "key-a", ""])

        assert len(pool) == 1
        assert pool.keys == ("key-a",)

    def test_empty_pool_current_raises(self):
        """current() on an empty pool is a configuration error."""
        pool = KeyPool([])

        with pytest.raises(ConfigurationError, match="No API key configured"):
            pool.current()

    def test_empty_pool_rotate_raises(self):
        """rotate() on an empty pool is a configuration error."""
        with pytest.raises(ConfigurationError):
            KeyPool().rotate()

    def test_describe(self):
        """describe() reports a 1-based position."""
        pool = KeyPool(["key-a", "key-b", "key-c"])
        pool.rotate()

        assert pool.describe() == "2/3"

    def test_concurrent_rotation_keeps_cursor_in_range(self):
        """Rotations from many threads are all counted."""
        pool = KeyPool(["key-a", "key-b", "key-c"])

        def spin():
            for _ in range(100):
                pool.rotate()

        threads = [threading.Thread(target=spin) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert pool.index == (8 * 100) % 3
