"""
Position-wise feed-forward network used inside every transformer block.
"""

from typing import Optional

import torch
import torch.nn as nn
import torch.nn.functional as F


class PositionwiseFeedForward(nn.Module):
    """
    FFN(x) = max(0, xW1 + b1)W2 + b2

    Applied to each position separately and identically.

    Args:
        feature_dim: Size of input/output features
        ff_dim: Hidden size
        dropout: Dropout probability applied after the ReLU. Default: 0.0

    Example:
        >>> ffn = PositionwiseFeedForward(feature_dim=64, ff_dim=256)
        >>> ffn(torch.randn(2, 10, 64)).shape
        torch.Size([2, 10, 64])
    """

    def __init__(self, feature_dim: int, ff_dim: int, dropout: float = 0.0):
        super().__init__()

        self.feature_dim = feature_dim
        self.ff_dim = ff_dim
        self.dropout = dropout

        self.linear1 = nn.Linear(feature_dim, ff_dim)
        self.linear2 = nn.Linear(ff_dim, feature_dim)

    def forward(self, x: torch.Tensor, training: Optional[bool] = None) -> torch.Tensor:
        training = self.training if training is None else training

        hidden = F.relu(self.linear1(x))
        if self.dropout > 0:
            hidden = F.dropout(hidden, p=self.dropout, training=training)

        return self.linear2(hidden)

    def extra_repr(self) -> str:
        return f"feature_dim={self.feature_dim}, ff_dim={self.ff_dim}"
