"""
Encoder components.

TransformerBlock is the self-attention plus feed-forward unit, and
TransformerEncoder embeds tokens and runs them through a stack of blocks with
full bidirectional attention.
"""

import logging
from typing import Optional

import torch
import torch.nn as nn
import torch.nn.functional as F

from transformer_core.attention import MultiHeadAttention
from transformer_core.embedding import TokenEmbedding
from transformer_core.errors import ShapeError, describe
from transformer_core.feedforward import PositionwiseFeedForward
from transformer_core.positional_encoding import PositionalEncoding
from transformer_core.stack import LayerStack

logger = logging.getLogger(__name__)


class TransformerBlock(nn.Module):
    """
    Self-attention and feed-forward sub-layers, each wrapped as
    LayerNorm(x + Dropout(Sublayer(x))).

    The two sub-layers get independent normalizations because their output
    distributions differ.

    Args:
        feature_dim: Size of input/output features
        num_heads: Number of attention heads
        ff_dim: Hidden size of the feed-forward network
        dropout: Dropout probability. Default: 0.1

    Example:
        >>> block = TransformerBlock(feature_dim=8, num_heads=2, ff_dim=32)
        >>> block(torch.randn(1, 3, 8)).shape
        torch.Size([1, 3, 8])
    """

    def __init__(
        self,
        feature_dim: int,
        num_heads: int,
        ff_dim: int,
        dropout: float = 0.1,
    ):
        super().__init__()

        self.feature_dim = feature_dim
        self.num_heads = num_heads
        self.ff_dim = ff_dim
        self.dropout = dropout

        self.self_attention = MultiHeadAttention(
            feature_dim=feature_dim,
            num_heads=num_heads,
            dropout=dropout,
        )
        self.feed_forward = PositionwiseFeedForward(
            feature_dim=feature_dim,
            ff_dim=ff_dim,
            dropout=dropout,
        )

        self.norm1 = nn.LayerNorm(feature_dim)
        self.norm2 = nn.LayerNorm(feature_dim)

    def forward(
        self,
        x: torch.Tensor,
        mask: Optional[torch.Tensor] = None,
        training: Optional[bool] = None,
    ) -> torch.Tensor:
        """
        Args:
            x: Input tensor of shape (batch, seq_len, feature_dim)
            mask: Optional attention mask, e.g. a padding mask
            training: Whether dropout is active. Defaults to ``self.training``.

        Returns:
            Tensor of the same shape as ``x``
        """
        training = self.training if training is None else training

        attn_output, _ = self.self_attention(x, x, x, mask=mask, training=training)
        x = self.norm1(x + F.dropout(attn_output, p=self.dropout, training=training))

        ff_output = self.feed_forward(x, training=training)
        x = self.norm2(x + F.dropout(ff_output, p=self.dropout, training=training))

        return x

    def extra_repr(self) -> str:
        return (
            f"feature_dim={self.feature_dim}, num_heads={self.num_heads}, "
            f"ff_dim={self.ff_dim}"
        )


class TransformerEncoder(nn.Module):
    """
    Token encoder: embedding, sqrt(feature_dim) scaling, positional encoding,
    dropout, then ``num_layers`` transformer blocks.

    The output is the context tensor ("memory") that a decoder attends to.

    Args:
        vocab_size: Number of distinct source token ids
        feature_dim: Size of the features. Default: 512
        num_heads: Number of attention heads. Default: 8
        ff_dim: Hidden size of the feed-forward networks. Default: 2048
        num_layers: Number of blocks. Default: 6
        max_length: Longest sequence accepted. Default: 5000
        dropout: Dropout probability. Default: 0.1
        padding_idx: Optional padding token id for the embedding

    Example:
        >>> encoder = TransformerEncoder(vocab_size=100, feature_dim=8,
        ...                              num_heads=2, ff_dim=32, num_layers=2)
        >>> encoder(torch.tensor([[5, 23, 67]])).shape
        torch.Size([1, 3, 8])
    """

    def __init__(
        self,
        vocab_size: int,
        feature_dim: int = 512,
        num_heads: int = 8,
        ff_dim: int = 2048,
        num_layers: int = 6,
        max_length: int = 5000,
        dropout: float = 0.1,
        padding_idx: Optional[int] = None,
    ):
        super().__init__()

        self.vocab_size = vocab_size
        self.feature_dim = feature_dim
        self.num_heads = num_heads
        self.ff_dim = ff_dim
        self.num_layers = num_layers
        self.max_length = max_length
        self.dropout = dropout

        self.embedding = TokenEmbedding(vocab_size, feature_dim, padding_idx=padding_idx)
        self.positional_encoding = PositionalEncoding(feature_dim, max_length)
        self.layers = LayerStack(
            TransformerBlock(
                feature_dim=feature_dim,
                num_heads=num_heads,
                ff_dim=ff_dim,
                dropout=dropout,
            )
            for _ in range(num_layers)
        )

        logger.debug("Built encoder: %s", self.extra_repr())

    def forward(
        self,
        tokens: torch.Tensor,
        padding_mask: Optional[torch.Tensor] = None,
        training: Optional[bool] = None,
    ) -> torch.Tensor:
        """
        Encode a batch of token sequences.

        Args:
            tokens: Token indices of shape (batch, seq_len)
            padding_mask: Optional key padding mask, e.g. from
                          ``attention.padding_mask``. Without one every position
                          attends to every other position.
            training: Whether dropout is active. Defaults to ``self.training``.

        Returns:
            Context tensor of shape (batch, seq_len, feature_dim)
        """
        if tokens.dim() != 2:
            raise ShapeError(
                f"tokens must have shape (batch, seq_len), got {describe(tokens)}"
            )
        training = self.training if training is None else training

        x = self.embedding(tokens)
        x = self.positional_encoding(x)
        x = F.dropout(x, p=self.dropout, training=training)

        return self.layers(x, mask=padding_mask, training=training)

    def extra_repr(self) -> str:
        return (
            f"vocab_size={self.vocab_size}, feature_dim={self.feature_dim}, "
            f"num_heads={self.num_heads}, ff_dim={self.ff_dim}, "
            f"num_layers={self.num_layers}"
        )
