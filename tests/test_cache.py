"""
Tests for the key/value caches.
"""

import torch

from transformer_core.cache import DecoderCache, KeyValueCache


class TestKeyValueCache:
    """Tests for KeyValueCache."""

    def test_starts_empty(self):
        cache = KeyValueCache()

        assert cache.length == 0
        assert not cache.is_filled

    def test_update_appends_along_length(self):
        cache = KeyValueCache()

        cache.update(torch.randn(2, 4, 3, 8), torch.randn(2, 4, 3, 8))
        key, value = cache.update(torch.randn(2, 4, 1, 8), torch.randn(2, 4, 1, 8))

        assert key.shape == (2, 4, 4, 8)
        assert value.shape == (2, 4, 4, 8)
        assert cache.length == 4

    def test_static_cache_keeps_first_fill(self):
        cache = KeyValueCache(static=True)
        first_key = torch.randn(1, 2, 5, 4)

        cache.update(first_key, torch.randn(1, 2, 5, 4))
        key, _ = cache.update(torch.randn(1, 2, 5, 4), torch.randn(1, 2, 5, 4))

        assert key is first_key

    def test_clear(self):
        cache = KeyValueCache()
        cache.update(torch.randn(1, 1, 2, 2), torch.randn(1, 1, 2, 2))

        cache.clear()

        assert cache.length == 0


class TestDecoderCache:
    """Tests for DecoderCache."""

    def test_one_entry_per_layer(self):
        cache = DecoderCache(num_layers=3)

        assert len(cache) == 3
        assert not cache[0].self_attention.static
        assert cache[0].cross_attention.static
        assert cache[0].self_attention is not cache[1].self_attention

    def test_position_tracking(self):
        cache = DecoderCache(num_layers=1)

        cache.advance(3)
        cache.advance(1)

        assert cache.position == 4

    def test_clear_resets_everything(self):
        cache = DecoderCache(num_layers=2)
        cache[1].self_attention.update(torch.randn(1, 1, 2, 2), torch.randn(1, 1, 2, 2))
        cache.advance(2)

        cache.clear()

        assert cache.position == 0
        assert cache[1].self_attention.length == 0
