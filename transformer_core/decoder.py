"""
Decoder components.

Each decoder block runs causally masked self-attention, cross-attention over
the encoder memory and a feed-forward network. Cross-attention is what ties
the decoder to the source sequence; without it the decoder is just a language
model over the target.
"""

import logging
from typing import Optional

import torch
import torch.nn as nn
import torch.nn.functional as F

from transformer_core.attention import (
    MultiHeadAttention,
    causal_mask as make_causal_mask,
    check_mask_shape,
)
from transformer_core.cache import DecoderCache, LayerCache
from transformer_core.embedding import TokenEmbedding
from transformer_core.errors import ShapeError, describe
from transformer_core.feedforward import PositionwiseFeedForward
from transformer_core.positional_encoding import PositionalEncoding
from transformer_core.stack import LayerStack

logger = logging.getLogger(__name__)


class DecoderBlock(nn.Module):
    """
    Three sub-layers, each followed by its own residual + LayerNorm:

    1. Masked multi-head self-attention over the target
    2. Multi-head cross-attention: queries from the target, keys and values
       from the encoder memory
    3. Position-wise feed-forward network

    Args:
        feature_dim: Size of input/output features
        num_heads: Number of attention heads
        ff_dim: Hidden size of the feed-forward network
        dropout: Dropout probability. Default: 0.1

    Example:
        >>> block = DecoderBlock(feature_dim=64, num_heads=4, ff_dim=256)
        >>> tgt = torch.randn(2, 10, 64)
        >>> memory = torch.randn(2, 15, 64)
        >>> block(tgt, memory).shape
        torch.Size([2, 10, 64])
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

        self.self_attention = MultiHeadAttention(feature_dim, num_heads, dropout=dropout)
        self.cross_attention = MultiHeadAttention(feature_dim, num_heads, dropout=dropout)
        self.feed_forward = PositionwiseFeedForward(feature_dim, ff_dim, dropout=dropout)

        self.norm1 = nn.LayerNorm(feature_dim)
        self.norm2 = nn.LayerNorm(feature_dim)
        self.norm3 = nn.LayerNorm(feature_dim)

    def forward(
        self,
        x: torch.Tensor,
        memory: torch.Tensor,
        self_mask: Optional[torch.Tensor] = None,
        memory_mask: Optional[torch.Tensor] = None,
        cache: Optional[LayerCache] = None,
        training: Optional[bool] = None,
    ) -> torch.Tensor:
        """
        Args:
            x: Target activations of shape (batch, tgt_len, feature_dim)
            memory: Encoder output of shape (batch, src_len, feature_dim)
            self_mask: Mask for self-attention, normally causal, broadcastable
                       to (batch, num_heads, tgt_len, key_len)
            memory_mask: Optional source padding mask for cross-attention
            cache: Optional key/value caches for this block
            training: Whether dropout is active. Defaults to ``self.training``.

        Returns:
            Tensor of shape (batch, tgt_len, feature_dim)
        """
        training = self.training if training is None else training
        self_cache = cache.self_attention if cache is not None else None
        cross_cache = cache.cross_attention if cache is not None else None

        attn_output, _ = self.self_attention(
            x, x, x, mask=self_mask, cache=self_cache, training=training
        )
        x = self.norm1(x + F.dropout(attn_output, p=self.dropout, training=training))

        cross_output, _ = self.cross_attention(
            x, memory, memory, mask=memory_mask, cache=cross_cache, training=training
        )
        x = self.norm2(x + F.dropout(cross_output, p=self.dropout, training=training))

        ff_output = self.feed_forward(x, training=training)
        x = self.norm3(x + F.dropout(ff_output, p=self.dropout, training=training))

        return x

    def extra_repr(self) -> str:
        return (
            f"feature_dim={self.feature_dim}, num_heads={self.num_heads}, "
            f"ff_dim={self.ff_dim}"
        )


class TransformerDecoder(nn.Module):
    """
    Token decoder producing vocabulary logits.

    Same embedding, scaling, positional encoding and stacking as the encoder,
    with decoder blocks in place of encoder blocks and a final projection to
    ``vocab_size``.

    Args:
        vocab_size: Number of distinct target token ids
        feature_dim: Size of the features. Default: 512
        num_heads: Number of attention heads. Default: 8
        ff_dim: Hidden size of the feed-forward networks. Default: 2048
        num_layers: Number of blocks. Default: 6
        max_length: Longest target sequence accepted. Default: 5000
        dropout: Dropout probability. Default: 0.1
        padding_idx: Optional padding token id for the embedding

    Example:
        >>> decoder = TransformerDecoder(vocab_size=1000, feature_dim=64,
        ...                              num_heads=4, ff_dim=256, num_layers=2)
        >>> tokens = torch.randint(0, 1000, (2, 10))
        >>> memory = torch.randn(2, 12, 64)
        >>> decoder(tokens, memory).shape
        torch.Size([2, 10, 1000])
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
            DecoderBlock(
                feature_dim=feature_dim,
                num_heads=num_heads,
                ff_dim=ff_dim,
                dropout=dropout,
            )
            for _ in range(num_layers)
        )
        self.output_projection = nn.Linear(feature_dim, vocab_size)

        logger.debug("Built decoder: %s", self.extra_repr())

    def new_cache(self) -> DecoderCache:
        """Create an empty cache sized for this decoder."""
        return DecoderCache(self.num_layers)

    def _check_memory(self, tokens: torch.Tensor, memory: torch.Tensor) -> None:
        if memory.dim() != 3 or memory.size(-1) != self.feature_dim:
            raise ShapeError(
                f"memory must have shape (batch, src_len, {self.feature_dim}), "
                f"got {describe(memory)}"
            )
        if memory.size(0) != tokens.size(0):
            raise ShapeError(
                f"memory batch {memory.size(0)} does not match tokens batch "
                f"{tokens.size(0)} (tokens {describe(tokens)}, memory {describe(memory)})"
            )

    def forward(
        self,
        tokens: torch.Tensor,
        memory: torch.Tensor,
        causal_mask: Optional[torch.Tensor] = None,
        memory_mask: Optional[torch.Tensor] = None,
        cache: Optional[DecoderCache] = None,
        training: Optional[bool] = None,
    ) -> torch.Tensor:
        """
        Decode target tokens against the encoder memory.

        Args:
            tokens: Target token indices of shape (batch, tgt_len)
            memory: Encoder output of shape (batch, src_len, feature_dim)
            causal_mask: Self-attention mask. When omitted a look-ahead mask
                         for the current length is built on every call. A
                         caller may pass its own, e.g. causal merged with
                         target padding.
            memory_mask: Optional source padding mask for cross-attention
            cache: Optional cache from ``new_cache()``. ``tokens`` then holds
                   only the positions after ``cache.position``, and the cache
                   advances by ``tgt_len``.
            training: Whether dropout is active. Defaults to ``self.training``.

        Returns:
            Logits of shape (batch, tgt_len, vocab_size)
        """
        if tokens.dim() != 2:
            raise ShapeError(
                f"tokens must have shape (batch, tgt_len), got {describe(tokens)}"
            )
        self._check_memory(tokens, memory)
        training = self.training if training is None else training

        offset = cache.position if cache is not None else 0
        tgt_len = tokens.size(1)

        if causal_mask is None:
            causal_mask = make_causal_mask(
                tgt_len, offset + tgt_len, device=tokens.device, dtype=memory.dtype
            )

        x = self.embedding(tokens)
        x = self.positional_encoding(x, offset=offset)
        x = F.dropout(x, p=self.dropout, training=training)

        # Every check runs before the first layer writes to the cache
        batch_size = tokens.size(0)
        check_mask_shape(
            causal_mask, (batch_size, self.num_heads, tgt_len, offset + tgt_len)
        )
        if memory_mask is not None:
            check_mask_shape(
                memory_mask, (batch_size, self.num_heads, tgt_len, memory.size(1))
            )

        per_layer = None
        if cache is not None:
            if len(cache) != self.num_layers:
                raise ValueError(
                    f"cache has {len(cache)} layers, decoder has {self.num_layers}"
                )
            per_layer = [{"cache": layer_cache} for layer_cache in cache.layers]

        x = self.layers(
            x,
            memory,
            self_mask=causal_mask,
            memory_mask=memory_mask,
            training=training,
            per_layer=per_layer,
        )

        if cache is not None:
            cache.advance(tgt_len)

        return self.output_projection(x)

    def extra_repr(self) -> str:
        return (
            f"vocab_size={self.vocab_size}, feature_dim={self.feature_dim}, "
            f"num_heads={self.num_heads}, ff_dim={self.ff_dim}, "
            f"num_layers={self.num_layers}"
        )
