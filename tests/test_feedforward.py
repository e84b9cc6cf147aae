"""
Tests for the Position-wise Feed-Forward Network.
"""

import torch
import torch.nn.functional as F

from transformer_core.feedforward import PositionwiseFeedForward


class TestPositionwiseFeedForward:
    """Tests for PositionwiseFeedForward."""

    def test_output_shape(self):
        ffn = PositionwiseFeedForward(feature_dim=32, ff_dim=128)

        assert ffn(torch.randn(2, 10, 32)).shape == (2, 10, 32)

    def test_layer_sizes(self):
        ffn = PositionwiseFeedForward(feature_dim=32, ff_dim=128)

        assert ffn.linear1.weight.shape == (128, 32)
        assert ffn.linear2.weight.shape == (32, 128)

    def test_matches_formula(self):
        """Test FFN(x) = max(0, xW1 + b1)W2 + b2."""
        ffn = PositionwiseFeedForward(feature_dim=8, ff_dim=16)
        x = torch.randn(3, 4, 8)

        expected = ffn.linear2(F.relu(ffn.linear1(x)))

        assert torch.allclose(ffn(x), expected)

    def test_position_wise(self):
        """Test that each position is transformed independently."""
        ffn = PositionwiseFeedForward(feature_dim=8, ff_dim=16)
        x = torch.randn(1, 5, 8)

        full = ffn(x)
        single = ffn(x[:, 2:3])

        assert torch.allclose(full[:, 2:3], single, atol=1e-6)

    def test_dropout_follows_training_flag(self):
        torch.manual_seed(0)
        ffn = PositionwiseFeedForward(feature_dim=16, ff_dim=64, dropout=0.5)
        x = torch.randn(2, 6, 16)

        assert torch.allclose(ffn(x, training=False), ffn(x, training=False))
        assert not torch.allclose(ffn(x, training=True), ffn(x, training=True))

    def test_extra_repr(self):
        assert "ff_dim=64" in PositionwiseFeedForward(16, 64).extra_repr()
