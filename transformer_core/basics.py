"""
Introductory attention forms.

These are the smallest versions of attention: a softmax-weighted average of
scalar values, scalar query-versus-keys scoring, and unscaled self-attention
over a matrix of row vectors. They have no parameters and are useful as
reference points when checking the full scaled, multi-head machinery.
"""

import torch
import torch.nn.functional as F

from transformer_core.errors import ShapeError, describe


def simple_attention(values: torch.Tensor) -> torch.Tensor:
    """
    Weighted average of ``values`` using their own softmax as the weights.

    Args:
        values: 1-D tensor of scores

    Returns:
        Scalar tensor ``sum(values * softmax(values))``
    """
    if values.dim() != 1:
        raise ShapeError(f"values must be 1-D, got shape {describe(values)}")

    importance = F.softmax(values, dim=0)
    return (values * importance).sum()


def pairwise_attention(query: torch.Tensor, keys: torch.Tensor) -> torch.Tensor:
    """
    Score a single scalar query against a vector of scalar keys.

    Example:
        >>> weights = pairwise_attention(torch.tensor(0.5),
        ...                              torch.tensor([0.1, 0.5, 0.3, 0.9]))
        >>> int(weights.argmax())
        3

    Args:
        query: 0-d or single-element tensor
        keys: 1-D tensor of keys

    Returns:
        Attention weights over ``keys``, shape ``(len(keys),)``
    """
    if query.numel() != 1:
        raise ShapeError(
            f"query must hold exactly one element, got shape {describe(query)}"
        )
    if keys.dim() != 1:
        raise ShapeError(f"keys must be 1-D, got shape {describe(keys)}")

    scores = query.reshape(()) * keys
    return F.softmax(scores, dim=0)


def matrix_attention(x: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Unscaled self-attention where every row attends to every row.

    Args:
        x: Tensor of shape (seq_len, dim)

    Returns:
        tuple of:
            - Output tensor of shape (seq_len, dim)
            - Attention weights of shape (seq_len, seq_len)
    """
    if x.dim() != 2:
        raise ShapeError(f"x must be 2-D (seq_len, dim), got shape {describe(x)}")

    scores = torch.matmul(x, x.t())
    weights = F.softmax(scores, dim=-1)
    return torch.matmul(weights, x), weights
