"""
Tests for the Positional Encoding module.
"""

import math
import pytest
import torch

from transformer_core.errors import ShapeError
from transformer_core.positional_encoding import PositionalEncoding, sinusoidal_table


class TestPositionalEncoding:
    """Tests for the PositionalEncoding module."""

    def test_initialization_default(self):
        pe = PositionalEncoding(feature_dim=512)
        assert pe.feature_dim == 512
        assert pe.max_length == 5000

    def test_output_shape_various_sizes(self):
        """Test output shape with various batch and sequence sizes."""
        pe = PositionalEncoding(feature_dim=32, max_length=500)

        for batch, seq_len in [(1, 1), (1, 100), (8, 50), (4, 500)]:
            x = torch.randn(batch, seq_len, 32)
            assert pe(x).shape == (batch, seq_len, 32)

    def test_encoding_is_added(self):
        """Test that zero input returns the table itself."""
        pe = PositionalEncoding(feature_dim=64, max_length=100)

        output = pe(torch.zeros(2, 10, 64))

        assert torch.allclose(output[0], pe.get_encoding(10))
        assert torch.allclose(output[1], pe.get_encoding(10))

    def test_sinusoidal_formula(self):
        """Test individual entries against the sin/cos definition."""
        feature_dim = 8
        table = sinusoidal_table(10, feature_dim)

        for pos in range(10):
            for i in range(feature_dim // 2):
                angle = pos / (10000 ** (2 * i / feature_dim))
                assert abs(table[pos, 2 * i].item() - math.sin(angle)) < 1e-5
                assert abs(table[pos, 2 * i + 1].item() - math.cos(angle)) < 1e-5

    def test_position_zero(self):
        """Test sin(0) = 0 on even and cos(0) = 1 on odd features."""
        encoding = PositionalEncoding(feature_dim=16, max_length=4).get_encoding(1)

        assert torch.allclose(encoding[0, 0::2], torch.zeros(8))
        assert torch.allclose(encoding[0, 1::2], torch.ones(8))

    def test_deterministic(self):
        """Test that applying twice gives bit-identical output."""
        pe = PositionalEncoding(feature_dim=8, max_length=10)
        x = torch.randn(2, 10, 8)

        assert torch.equal(pe(x), pe(x))
        assert torch.equal(
            PositionalEncoding(feature_dim=8, max_length=10).pe,
            PositionalEncoding(feature_dim=8, max_length=10).pe,
        )

    def test_positions_zero_and_one_differ_in_every_feature(self):
        encoding = PositionalEncoding(feature_dim=8, max_length=10).get_encoding(2)

        assert (encoding[0] != encoding[1]).all()

    def test_every_position_unique(self):
        encoding = PositionalEncoding(feature_dim=16, max_length=50).get_encoding(50)

        distances = torch.cdist(encoding, encoding)
        off_diagonal = distances[~torch.eye(50, dtype=torch.bool)]
        assert (off_diagonal > 1e-3).all()

    def test_values_bounded(self):
        encoding = PositionalEncoding(feature_dim=64, max_length=1000).get_encoding(1000)

        assert encoding.abs().max().item() <= 1.0

    def test_not_a_parameter(self):
        """Test that the table is a non-persistent buffer, never a parameter."""
        pe = PositionalEncoding(feature_dim=64, max_length=100)

        assert "pe" in dict(pe.named_buffers())
        assert len(list(pe.parameters())) == 0
        assert "pe" not in pe.state_dict()

    def test_gradient_does_not_flow_to_table(self):
        pe = PositionalEncoding(feature_dim=16, max_length=20)
        x = torch.randn(1, 5, 16, requires_grad=True)

        pe(x).sum().backward()

        assert x.grad is not None
        assert not pe.pe.requires_grad

    def test_sequence_too_long_raises(self):
        pe = PositionalEncoding(feature_dim=64, max_length=100)

        with pytest.raises(ShapeError, match="max_length=100"):
            pe(torch.randn(1, 150, 64))

    def test_offset(self):
        """Test that an offset reads later rows of the table."""
        pe = PositionalEncoding(feature_dim=8, max_length=10)

        output = pe(torch.zeros(1, 2, 8), offset=3)

        assert torch.allclose(output[0], pe.get_encoding(5)[3:5])

    def test_offset_past_end_raises(self):
        pe = PositionalEncoding(feature_dim=8, max_length=10)

        with pytest.raises(ShapeError):
            pe(torch.zeros(1, 3, 8), offset=8)

    def test_wrong_feature_size_raises(self):
        pe = PositionalEncoding(feature_dim=8, max_length=10)

        with pytest.raises(ShapeError, match=r"seq_len, 8\)"):
            pe(torch.zeros(1, 3, 6))

    def test_get_encoding_with_offset(self):
        pe = PositionalEncoding(feature_dim=8, max_length=10)

        assert torch.equal(pe.get_encoding(2, offset=3), pe.get_encoding(5)[3:5])

    def test_get_encoding_too_long_raises(self):
        with pytest.raises(ShapeError, match="max_length=10"):
            PositionalEncoding(feature_dim=8, max_length=10).get_encoding(11)

    def test_odd_feature_dim(self):
        pe = PositionalEncoding(feature_dim=7, max_length=10)

        assert pe(torch.zeros(1, 4, 7)).shape == (1, 4, 7)

    def test_extra_repr(self):
        repr_str = PositionalEncoding(feature_dim=8, max_length=10).extra_repr()

        assert "feature_dim=8" in repr_str
        assert "max_length=10" in repr_str
