"""
Attention mechanisms.

Scaled dot-product attention, its multi-head generalization and the masks
used to restrict which key positions a query may see.

Masks come in two forms and every function here accepts either:
- boolean: ``True`` marks a forbidden position
- floating: added to the scores before softmax (``-inf`` forbids, ``0`` allows)
"""

import math
from typing import Optional, Sequence

import torch
import torch.nn as nn
import torch.nn.functional as F

from transformer_core.cache import KeyValueCache
from transformer_core.errors import ShapeError, describe


def _check_attention_shapes(
    query: torch.Tensor,
    key: torch.Tensor,
    value: torch.Tensor,
) -> None:
    if query.dim() < 2 or key.dim() < 2 or value.dim() < 2:
        raise ShapeError(
            "query, key and value need at least 2 dimensions, got "
            f"{describe(query)}, {describe(key)}, {describe(value)}"
        )
    if query.size(-1) != key.size(-1):
        raise ShapeError(
            f"query feature size {query.size(-1)} does not match key feature "
            f"size {key.size(-1)} (query {describe(query)}, key {describe(key)})"
        )
    if query.shape[:-2] != key.shape[:-2]:
        raise ShapeError(
            f"leading dimensions of query {describe(query)} and key "
            f"{describe(key)} must match"
        )
    if key.shape[:-1] != value.shape[:-1]:
        raise ShapeError(
            f"value {describe(value)} must share all but the last dimension "
            f"with key {describe(key)}"
        )


def check_mask_shape(mask: torch.Tensor, scores_shape: Sequence[int]) -> None:
    """
    Check that ``mask`` broadcasts to attention scores of ``scores_shape``
    without enlarging them.

    Raises:
        ShapeError: If the mask does not fit the scores
    """
    scores_shape = tuple(scores_shape)
    try:
        broadcast = torch.broadcast_shapes(mask.shape, scores_shape)
    except RuntimeError as exc:
        raise ShapeError(
            f"mask {describe(mask)} is not broadcastable to attention scores "
            f"{scores_shape}"
        ) from exc
    if tuple(broadcast) != scores_shape:
        raise ShapeError(
            f"mask {describe(mask)} would expand attention scores "
            f"{scores_shape} to {tuple(broadcast)}"
        )


def scaled_dot_product_attention(
    query: torch.Tensor,
    key: torch.Tensor,
    value: torch.Tensor,
    mask: Optional[torch.Tensor] = None,
    dropout: float = 0.0,
    training: bool = False,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Compute Scaled Dot-Product Attention.

    Attention(Q, K, V) = softmax(QK^T / sqrt(d_k) + mask) * V

    Args:
        query: Query tensor of shape (..., seq_len_q, d_k)
        key: Key tensor of shape (..., seq_len_k, d_k)
        value: Value tensor of shape (..., seq_len_k, d_v)
        mask: Optional boolean or additive mask broadcastable to
              (..., seq_len_q, seq_len_k)
        dropout: Dropout probability on the attention weights
        training: Whether dropout is active

    Returns:
        tuple of:
            - Output tensor of shape (..., seq_len_q, d_v)
            - Attention weights of shape (..., seq_len_q, seq_len_k). These
              are the weights before dropout, so each row sums to 1, except
              rows whose keys are all masked, which are all zero.

    Raises:
        ShapeError: If the shapes of query, key, value or mask disagree

    Example:
        >>> q = torch.randn(2, 4, 10, 16)  # (batch, heads, seq_len, d_k)
        >>> output, weights = scaled_dot_product_attention(q, q, q)
        >>> weights.shape
        torch.Size([2, 4, 10, 10])
    """
    _check_attention_shapes(query, key, value)

    d_k = query.size(-1)

    # scores: (..., seq_len_q, seq_len_k)
    scores = torch.matmul(query, key.transpose(-2, -1)) / math.sqrt(d_k)

    fully_masked = None
    if mask is not None:
        check_mask_shape(mask, scores.shape)
        if mask.dtype == torch.bool:
            scores = scores.masked_fill(mask, float("-inf"))
        else:
            scores = scores + mask.to(scores.dtype)
        # A query with every key masked attends to nothing instead of NaN
        fully_masked = torch.isneginf(scores).all(dim=-1, keepdim=True)
        scores = scores.masked_fill(fully_masked, 0.0)

    attention_weights = F.softmax(scores, dim=-1)

    if fully_masked is not None:
        attention_weights = attention_weights.masked_fill(fully_masked, 0.0)

    dropped = attention_weights
    if dropout > 0:
        dropped = F.dropout(attention_weights, p=dropout, training=training)

    output = torch.matmul(dropped, value)

    return output, attention_weights


class ScaledDotProductAttention(nn.Module):
    """
    Scaled Dot-Product Attention as a module.

    Holds no parameters, only the attention-dropout probability.

    Args:
        dropout: Dropout probability for attention weights. Default: 0.0
    """

    def __init__(self, dropout: float = 0.0):
        super().__init__()
        self.dropout = dropout

    def forward(
        self,
        query: torch.Tensor,
        key: torch.Tensor,
        value: torch.Tensor,
        mask: Optional[torch.Tensor] = None,
        training: Optional[bool] = None,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        training = self.training if training is None else training
        return scaled_dot_product_attention(
            query, key, value, mask=mask, dropout=self.dropout, training=training
        )

    def extra_repr(self) -> str:
        return f"dropout={self.dropout}"


def causal_mask(
    length: int,
    key_length: Optional[int] = None,
    device: Optional[torch.device] = None,
    dtype: torch.dtype = torch.float32,
) -> torch.Tensor:
    """
    Create an additive look-ahead mask for decoder self-attention.

    The queries are taken to be the last ``length`` of ``key_length``
    positions, so with a key/value cache holding earlier positions the mask
    still lets each query see everything up to and including itself.

    Args:
        length: Number of query positions
        key_length: Number of key positions. Defaults to ``length``.
        device: Device to create the mask on
        dtype: Floating dtype of the mask

    Returns:
        Tensor of shape (length, key_length) with ``-inf`` above the diagonal
        and ``0`` elsewhere.

    Example:
        >>> causal_mask(3)
        tensor([[0., -inf, -inf],
                [0., 0., -inf],
                [0., 0., 0.]])
    """
    if key_length is None:
        key_length = length
    if key_length < length:
        raise ShapeError(
            f"key_length ({key_length}) cannot be shorter than length ({length})"
        )

    offset = key_length - length
    forbidden = torch.triu(
        torch.ones(length, key_length, device=device), diagonal=offset + 1
    ).bool()
    mask = torch.zeros(length, key_length, dtype=dtype, device=device)
    return mask.masked_fill(forbidden, float("-inf"))


def padding_mask(tokens: torch.Tensor, pad_idx: int) -> torch.Tensor:
    """
    Create a key padding mask from token indices.

    Args:
        tokens: Token indices of shape (batch, seq_len)
        pad_idx: Index of the padding token

    Returns:
        Boolean mask of shape (batch, 1, 1, seq_len), ``True`` at padding.
    """
    return (tokens == pad_idx).unsqueeze(1).unsqueeze(2)


def as_additive(mask: torch.Tensor, dtype: torch.dtype = torch.float32) -> torch.Tensor:
    """Convert a boolean mask to additive form; floating masks pass through."""
    if mask.dtype == torch.bool:
        additive = torch.zeros(mask.shape, dtype=dtype, device=mask.device)
        return additive.masked_fill(mask, float("-inf"))
    return mask.to(dtype)


def merge_masks(
    *masks: Optional[torch.Tensor], dtype: torch.dtype = torch.float32
) -> Optional[torch.Tensor]:
    """
    Combine several masks into one additive mask.

    ``None`` entries are skipped. A query row that ends up fully masked gets
    all-zero attention weights in ``scaled_dot_product_attention``.

    Returns:
        The broadcast sum of the additive masks, or ``None`` if no mask given
    """
    merged = None
    for mask in masks:
        if mask is None:
            continue
        additive = as_additive(mask, dtype)
        merged = additive if merged is None else merged + additive
    return merged


class MultiHeadAttention(nn.Module):
    """
    Multi-Head Attention.

    MultiHead(Q, K, V) = Concat(head_1, ..., head_h) W^O
    where head_i = Attention(Q W_i^Q, K W_i^K, V W_i^V)

    The feature axis is split into ``num_heads`` disjoint slices of size
    ``head_dim`` and all heads run in a single batched attention call.

    Args:
        feature_dim: Size of input/output features
        num_heads: Number of attention heads
        dropout: Dropout probability for attention weights. Default: 0.0
        bias: Whether the projections have a bias. Default: True

    Raises:
        ShapeError: If feature_dim is not divisible by num_heads

    Example:
        >>> mha = MultiHeadAttention(feature_dim=64, num_heads=4)
        >>> x = torch.randn(2, 10, 64)  # (batch, seq_len, feature_dim)
        >>> output, weights = mha(x, x, x)
        >>> weights.shape
        torch.Size([2, 4, 10, 10])
    """

    def __init__(
        self,
        feature_dim: int,
        num_heads: int,
        dropout: float = 0.0,
        bias: bool = True,
    ):
        super().__init__()

        if num_heads <= 0 or feature_dim % num_heads != 0:
            raise ShapeError(
                f"feature_dim ({feature_dim}) must be divisible by "
                f"num_heads ({num_heads})"
            )

        self.feature_dim = feature_dim
        self.num_heads = num_heads
        self.head_dim = feature_dim // num_heads
        self.dropout = dropout

        self.w_q = nn.Linear(feature_dim, feature_dim, bias=bias)
        self.w_k = nn.Linear(feature_dim, feature_dim, bias=bias)
        self.w_v = nn.Linear(feature_dim, feature_dim, bias=bias)
        self.w_o = nn.Linear(feature_dim, feature_dim, bias=bias)

    def _check_inputs(
        self,
        query: torch.Tensor,
        key: torch.Tensor,
        value: torch.Tensor,
    ) -> None:
        for name, tensor in (("query", query), ("key", key), ("value", value)):
            if tensor.dim() != 3 or tensor.size(-1) != self.feature_dim:
                raise ShapeError(
                    f"{name} must have shape (batch, seq_len, {self.feature_dim}), "
                    f"got {describe(tensor)}"
                )
        if not query.size(0) == key.size(0) == value.size(0):
            raise ShapeError(
                f"batch sizes differ: query {describe(query)}, key "
                f"{describe(key)}, value {describe(value)}"
            )
        if key.size(1) != value.size(1):
            raise ShapeError(
                f"key {describe(key)} and value {describe(value)} must have "
                "the same length"
            )

    def _split_heads(self, x: torch.Tensor) -> torch.Tensor:
        # (batch, seq_len, feature_dim) -> (batch, num_heads, seq_len, head_dim)
        batch_size, seq_len, _ = x.shape
        return x.view(batch_size, seq_len, self.num_heads, self.head_dim).transpose(1, 2)

    def _merge_heads(self, x: torch.Tensor) -> torch.Tensor:
        # (batch, num_heads, seq_len, head_dim) -> (batch, seq_len, feature_dim)
        batch_size, _, seq_len, _ = x.shape
        return x.transpose(1, 2).contiguous().view(batch_size, seq_len, self.feature_dim)

    def forward(
        self,
        query: torch.Tensor,
        key: torch.Tensor,
        value: torch.Tensor,
        mask: Optional[torch.Tensor] = None,
        cache: Optional[KeyValueCache] = None,
        training: Optional[bool] = None,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """
        Apply multi-head attention.

        Args:
            query: Query tensor of shape (batch, seq_len_q, feature_dim)
            key: Key tensor of shape (batch, seq_len_k, feature_dim)
            value: Value tensor of shape (batch, seq_len_k, feature_dim)
            mask: Optional mask shared by all heads, broadcastable to
                  (batch, num_heads, seq_len_q, seq_len_k)
            cache: Optional key/value cache. Keys and values projected in this
                   call are appended to it and attention runs over everything
                   it holds. A filled static cache is used as-is.
            training: Whether dropout is active. Defaults to ``self.training``.

        Returns:
            tuple of:
                - Output tensor of shape (batch, seq_len_q, feature_dim)
                - Attention weights of shape (batch, num_heads, seq_len_q, seq_len_k)
        """
        training = self.training if training is None else training
        self._check_inputs(query, key, value)

        q = self._split_heads(self.w_q(query))

        reuse_cache = cache is not None and cache.static and cache.is_filled
        if mask is not None:
            # Validate before the cache grows so a rejected call leaves it intact
            if reuse_cache:
                key_len = cache.length
            else:
                key_len = key.size(1) + (cache.length if cache is not None else 0)
            check_mask_shape(
                mask, (query.size(0), self.num_heads, query.size(1), key_len)
            )

        if reuse_cache:
            k, v = cache.key, cache.value
        else:
            k = self._split_heads(self.w_k(key))
            v = self._split_heads(self.w_v(value))
            if cache is not None:
                k, v = cache.update(k, v)

        attn_output, attn_weights = scaled_dot_product_attention(
            q, k, v, mask=mask, dropout=self.dropout, training=training
        )

        output = self.w_o(self._merge_heads(attn_output))

        return output, attn_weights

    def extra_repr(self) -> str:
        return (
            f"feature_dim={self.feature_dim}, num_heads={self.num_heads}, "
            f"head_dim={self.head_dim}"
        )
