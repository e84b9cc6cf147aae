"""
Tests for the introductory attention forms.
"""

import pytest
import torch

from transformer_core.basics import matrix_attention, pairwise_attention, simple_attention
from transformer_core.errors import ShapeError


class TestSimpleAttention:
    """Tests for simple_attention."""

    def test_returns_weighted_average(self):
        """Test that output is the softmax-weighted sum of the values."""
        words = torch.tensor([0.1, 0.5, 0.3, 0.9])

        output = simple_attention(words)

        expected = (words * torch.softmax(words, dim=0)).sum()
        assert output.dim() == 0
        assert torch.allclose(output, expected)

    def test_output_within_value_range(self):
        """Test that a weighted average stays between min and max."""
        words = torch.tensor([0.1, 0.5, 0.3, 0.9])

        output = simple_attention(words).item()

        assert 0.1 <= output <= 0.9

    def test_rejects_matrix(self):
        with pytest.raises(ShapeError):
            simple_attention(torch.randn(2, 3))


class TestPairwiseAttention:
    """Tests for pairwise_attention."""

    def test_ranks_keys_by_product(self):
        """Test query 0.5 against keys [0.1, 0.5, 0.3, 0.9]."""
        query = torch.tensor(0.5)
        keys = torch.tensor([0.1, 0.5, 0.3, 0.9])

        weights = pairwise_attention(query, keys)

        # Products are [0.05, 0.25, 0.15, 0.45]
        expected = torch.softmax(torch.tensor([0.05, 0.25, 0.15, 0.45]), dim=0)
        assert torch.allclose(weights, expected)
        assert weights.argmax().item() == 3
        assert weights.argmin().item() == 0
        assert torch.isclose(weights.sum(), torch.tensor(1.0))

    def test_single_element_query(self):
        """Test that a one-element 1-D query behaves like a scalar."""
        keys = torch.tensor([0.1, 0.5, 0.3, 0.9])

        scalar = pairwise_attention(torch.tensor(0.5), keys)
        vector = pairwise_attention(torch.tensor([0.5]), keys)

        assert torch.allclose(scalar, vector)

    def test_rejects_multi_element_query(self):
        with pytest.raises(ShapeError, match="exactly one element"):
            pairwise_attention(torch.tensor([0.5, 0.1]), torch.tensor([0.1, 0.5]))


class TestMatrixAttention:
    """Tests for matrix_attention."""

    def test_output_shapes(self):
        x = torch.randn(5, 3)

        output, weights = matrix_attention(x)

        assert output.shape == (5, 3)
        assert weights.shape == (5, 5)

    def test_equal_similarity_row(self):
        """Test that [0.5, 0.5] weights [1, 0] and [0, 1] equally."""
        x = torch.tensor([[1.0, 0.0], [0.0, 1.0], [0.5, 0.5]])

        output, weights = matrix_attention(x)

        assert torch.isclose(weights[2, 0], weights[2, 1])
        # The third output is symmetric in the two features
        assert torch.isclose(output[2, 0], output[2, 1])

    def test_rows_sum_to_one(self):
        _, weights = matrix_attention(torch.randn(4, 6))

        assert torch.allclose(weights.sum(dim=-1), torch.ones(4), atol=1e-5)

    def test_rejects_3d_input(self):
        with pytest.raises(ShapeError, match="2-D"):
            matrix_attention(torch.randn(1, 3, 2))
