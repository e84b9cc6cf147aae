"""
Sinusoidal positional encoding.

Attention scores depend only on pairwise similarity, so without an explicit
position signal the model cannot tell ``cat eats fish`` from ``fish eats cat``.
"""

import math

import torch
import torch.nn as nn

from transformer_core.errors import ShapeError, describe


def sinusoidal_table(max_length: int, feature_dim: int) -> torch.Tensor:
    """
    Build the fixed encoding table.

    PE(pos, 2i)   = sin(pos / 10000^(2i/feature_dim))
    PE(pos, 2i+1) = cos(pos / 10000^(2i/feature_dim))

    Returns:
        Tensor of shape (max_length, feature_dim)
    """
    position = torch.arange(0, max_length, dtype=torch.float).unsqueeze(1)

    # 10000^(-2i/feature_dim) computed in log space
    div_term = torch.exp(
        torch.arange(0, feature_dim, 2, dtype=torch.float)
        * (-math.log(10000.0) / feature_dim)
    )

    table = torch.zeros(max_length, feature_dim)
    table[:, 0::2] = torch.sin(position * div_term)
    # An odd feature_dim has one fewer cosine column than sine columns
    table[:, 1::2] = torch.cos(position * div_term[: feature_dim // 2])
    return table


class PositionalEncoding(nn.Module):
    """
    Adds a deterministic per-position signal to activations.

    The table is computed once here and never trained. It is kept as a
    non-persistent buffer: it follows the module across devices but is not
    a parameter and is not written to the state dict.

    Args:
        feature_dim: Size of the features the encoding is added to
        max_length: Longest sequence the table covers. Default: 5000

    Example:
        >>> pe = PositionalEncoding(feature_dim=8, max_length=10)
        >>> pe(torch.zeros(1, 4, 8)).shape
        torch.Size([1, 4, 8])
    """

    def __init__(self, feature_dim: int, max_length: int = 5000):
        super().__init__()

        self.feature_dim = feature_dim
        self.max_length = max_length

        self.register_buffer(
            "pe", sinusoidal_table(max_length, feature_dim), persistent=False
        )

    def forward(self, x: torch.Tensor, offset: int = 0) -> torch.Tensor:
        """
        Add positional encoding to ``x``.

        Args:
            x: Input tensor of shape (batch, seq_len, feature_dim)
            offset: Position of the first row of ``x``; non-zero when decoding
                    incrementally

        Returns:
            Tensor of shape (batch, seq_len, feature_dim)

        Raises:
            ShapeError: If offset + seq_len exceeds max_length or the feature
                        size is wrong
        """
        if x.dim() != 3 or x.size(-1) != self.feature_dim:
            raise ShapeError(
                f"expected input of shape (batch, seq_len, {self.feature_dim}), "
                f"got {describe(x)}"
            )

        return x + self.get_encoding(x.size(1), offset).to(x.dtype)

    def get_encoding(self, seq_len: int, offset: int = 0) -> torch.Tensor:
        """Return the (seq_len, feature_dim) slice of the table starting at ``offset``."""
        end = offset + seq_len
        if end > self.max_length:
            raise ShapeError(
                f"positions up to {end} requested but the positional table "
                f"only covers max_length={self.max_length}"
            )
        return self.pe[offset:end]

    def extra_repr(self) -> str:
        return f"feature_dim={self.feature_dim}, max_length={self.max_length}"
