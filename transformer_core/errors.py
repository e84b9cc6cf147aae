"""
Exceptions raised by the attention pipeline.
"""


class ShapeError(ValueError):
    """
    Raised when a tensor violates a shape contract.

    Covers feature-size mismatches between query and key, key/value length
    mismatches, masks that do not broadcast to the score shape, feature
    dimensions not divisible by the head count and sequences longer than the
    positional table.
    """


def describe(tensor) -> str:
    """Format a tensor's shape for error messages, e.g. ``(2, 5, 16)``."""
    return str(tuple(tensor.shape))
