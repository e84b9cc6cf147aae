"""
Token embedding scaled by sqrt(feature_dim).
"""

import math
from typing import Optional

import torch
import torch.nn as nn


class TokenEmbedding(nn.Module):
    """
    Maps token indices to dense vectors.

    The lookup is multiplied by sqrt(feature_dim) so that embeddings and the
    positional signal added after them have comparable magnitude.

    Args:
        vocab_size: Number of distinct token ids
        feature_dim: Size of each embedding vector
        padding_idx: Optional id whose vector stays zero and gets no gradient

    Example:
        >>> embedding = TokenEmbedding(vocab_size=100, feature_dim=16)
        >>> embedding(torch.tensor([[5, 23, 67]])).shape
        torch.Size([1, 3, 16])
    """

    def __init__(
        self,
        vocab_size: int,
        feature_dim: int,
        padding_idx: Optional[int] = None,
    ):
        super().__init__()

        self.vocab_size = vocab_size
        self.feature_dim = feature_dim
        self.padding_idx = padding_idx

        self.embedding = nn.Embedding(
            num_embeddings=vocab_size,
            embedding_dim=feature_dim,
            padding_idx=padding_idx,
        )
        self.scale = math.sqrt(feature_dim)

    def forward(self, tokens: torch.Tensor) -> torch.Tensor:
        """
        Args:
            tokens: Token indices of shape (batch, seq_len)

        Returns:
            Tensor of shape (batch, seq_len, feature_dim)
        """
        if tokens.numel() > 0:
            low, high = int(tokens.min()), int(tokens.max())
            if low < 0 or high >= self.vocab_size:
                raise ValueError(
                    f"token ids must lie in [0, {self.vocab_size}), "
                    f"got values in [{low}, {high}]"
                )
        return self.embedding(tokens) * self.scale

    def extra_repr(self) -> str:
        return (
            f"vocab_size={self.vocab_size}, feature_dim={self.feature_dim}, "
            f"padding_idx={self.padding_idx}"
        )
