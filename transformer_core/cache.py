"""
Key/value caches for incremental decoding.

During autoregressive generation every step would otherwise re-project the
whole prefix. A cache keeps the per-head key and value projections of the
positions already processed so that each step only projects the newest token.
"""

from dataclasses import dataclass, field
from typing import Optional

import torch


@dataclass
class KeyValueCache:
    """
    Projected keys and values for one attention module.

    Tensors have shape (batch, num_heads, length, head_dim). A ``static`` cache
    holds projections of a sequence that never changes between steps (the
    encoder memory seen by cross-attention); it is filled on first use and
    then returned unchanged.
    """

    key: Optional[torch.Tensor] = None
    value: Optional[torch.Tensor] = None
    static: bool = False

    @property
    def length(self) -> int:
        """Number of cached positions."""
        return 0 if self.key is None else self.key.size(2)

    @property
    def is_filled(self) -> bool:
        return self.key is not None

    def update(
        self, key: torch.Tensor, value: torch.Tensor
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """
        Add new projections and return everything cached so far.

        Args:
            key: New keys of shape (batch, num_heads, new_len, head_dim)
            value: New values of shape (batch, num_heads, new_len, head_dim)

        Returns:
            tuple of the full cached (key, value)
        """
        if self.key is None:
            self.key, self.value = key, value
        elif not self.static:
            self.key = torch.cat([self.key, key], dim=2)
            self.value = torch.cat([self.value, value], dim=2)
        return self.key, self.value

    def clear(self) -> None:
        self.key = None
        self.value = None


@dataclass
class LayerCache:
    """Caches for the two attention modules of one decoder block."""

    self_attention: KeyValueCache = field(default_factory=KeyValueCache)
    cross_attention: KeyValueCache = field(
        default_factory=lambda: KeyValueCache(static=True)
    )


class DecoderCache:
    """
    Per-layer caches for a whole decoder stack.

    ``position`` counts the target positions already consumed, which is also
    the offset used for positional encoding and causal masking of the next
    call.

    Args:
        num_layers: Number of decoder blocks

    Example:
        >>> cache = DecoderCache(num_layers=2)
        >>> logits = decoder(tokens[:, :1], memory, cache=cache)
        >>> cache.position
        1
    """

    def __init__(self, num_layers: int):
        self.layers = [LayerCache() for _ in range(num_layers)]
        self.position = 0

    def __len__(self) -> int:
        return len(self.layers)

    def __getitem__(self, index: int) -> LayerCache:
        return self.layers[index]

    def advance(self, steps: int) -> None:
        self.position += steps

    def clear(self) -> None:
        for layer in self.layers:
            layer.self_attention.clear()
            layer.cross_attention.clear()
        self.position = 0
