"""
Weight initialization and parameter views.
"""

from typing import Iterator

import torch.nn as nn


def init_transformer_weights(module: nn.Module, feature_dim: int = 512) -> None:
    """
    Initialize one module the way the reference Transformer does.

    - Linear layers: Xavier uniform, zero bias
    - Embeddings: Normal with std = feature_dim^(-0.5), padding row zeroed
    - LayerNorm: weight=1, bias=0

    Meant for ``model.apply``.
    """
    if isinstance(module, nn.Linear):
        nn.init.xavier_uniform_(module.weight)
        if module.bias is not None:
            nn.init.zeros_(module.bias)

    elif isinstance(module, nn.Embedding):
        nn.init.normal_(module.weight, mean=0.0, std=feature_dim ** -0.5)
        if module.padding_idx is not None:
            nn.init.zeros_(module.weight[module.padding_idx])

    elif isinstance(module, nn.LayerNorm):
        nn.init.ones_(module.weight)
        nn.init.zeros_(module.bias)


def init_normal_weights(module: nn.Module, std: float = 0.02) -> None:
    """Small-normal initialization for Linear and Embedding weights."""
    if isinstance(module, (nn.Linear, nn.Embedding)):
        nn.init.normal_(module.weight, mean=0.0, std=std)

    if isinstance(module, nn.Linear) and module.bias is not None:
        nn.init.zeros_(module.bias)
    elif isinstance(module, nn.Embedding) and module.padding_idx is not None:
        nn.init.zeros_(module.weight[module.padding_idx])
    elif isinstance(module, nn.LayerNorm):
        nn.init.ones_(module.weight)
        nn.init.zeros_(module.bias)


def trainable_parameters(model: nn.Module) -> Iterator[nn.Parameter]:
    """
    Yield every parameter an optimizer should update.

    Positional tables are buffers, not parameters, so they never appear here.
    Parameters shared between sub-modules are yielded once.
    """
    for param in model.parameters():
        if param.requires_grad:
            yield param


def count_parameters(model: nn.Module, trainable_only: bool = True) -> int:
    if trainable_only:
        return sum(p.numel() for p in trainable_parameters(model))
    return sum(p.numel() for p in model.parameters())


def get_parameter_stats(model: nn.Module) -> dict:
    """
    Count parameters overall and per top-level child.

    Returns:
        Dictionary with ``total_params``, ``trainable_params``,
        ``non_trainable_params`` and ``layer_stats`` (child name -> count)
    """
    stats = {
        "total_params": 0,
        "trainable_params": 0,
        "non_trainable_params": 0,
        "layer_stats": {},
    }

    for name, param in model.named_parameters():
        numel = param.numel()
        stats["total_params"] += numel

        if param.requires_grad:
            stats["trainable_params"] += numel
        else:
            stats["non_trainable_params"] += numel

        child = name.split(".")[0]
        stats["layer_stats"][child] = stats["layer_stats"].get(child, 0) + numel

    return stats
