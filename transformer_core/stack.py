"""
Ordered stacking of blocks.

Encoder and decoder towers are both a sequence of blocks that share one
capability: ``forward(x, ...) -> x`` with the activation shape unchanged.
"""

from typing import Any, Iterable, Iterator, Mapping, Optional, Protocol, Sequence

import torch
import torch.nn as nn


class SequenceLayer(Protocol):
    """Anything that maps a (batch, seq_len, feature_dim) activation to one of the same shape."""

    def __call__(self, x: torch.Tensor, *args: Any, **kwargs: Any) -> torch.Tensor:
        ...


class LayerStack(nn.Module):
    """
    Runs an activation through layers in order.

    Positional and keyword arguments given to ``forward`` reach every layer
    unchanged. Arguments that differ per layer, such as key/value caches, go
    in ``per_layer``: one mapping of extra keyword arguments per layer.

    Args:
        layers: The layers, in execution order

    Example:
        >>> stack = LayerStack(TransformerBlock(64, 4, 256) for _ in range(2))
        >>> stack(torch.randn(2, 10, 64)).shape
        torch.Size([2, 10, 64])
    """

    def __init__(self, layers: Iterable[nn.Module]):
        super().__init__()
        self.layers = nn.ModuleList(layers)

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self) -> Iterator[nn.Module]:
        return iter(self.layers)

    def __getitem__(self, index: int) -> nn.Module:
        return self.layers[index]

    def forward(
        self,
        x: torch.Tensor,
        *args: Any,
        per_layer: Optional[Sequence[Mapping[str, Any]]] = None,
        **kwargs: Any,
    ) -> torch.Tensor:
        if per_layer is not None and len(per_layer) != len(self.layers):
            raise ValueError(
                f"got per-layer arguments for {len(per_layer)} layers, "
                f"stack has {len(self.layers)}"
            )

        for index, layer in enumerate(self.layers):
            extra = per_layer[index] if per_layer is not None else {}
            x = layer(x, *args, **kwargs, **extra)

        return x

    def extra_repr(self) -> str:
        return f"num_layers={len(self.layers)}"
