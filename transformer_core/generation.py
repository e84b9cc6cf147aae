"""
Autoregressive generation.

A generator seeds each sequence with a start token, then repeatedly runs the
decoder over what has been produced so far plus the fixed encoder memory and
asks a decoding policy for the next token. A sequence finishes when it emits
the end token; generation stops when every sequence has finished or the
length bound is reached.
"""

import enum
import logging
from typing import Callable, Optional

import torch
import torch.nn.functional as F

from transformer_core.attention import padding_mask
from transformer_core.errors import ShapeError

logger = logging.getLogger(__name__)

# Maps last-position logits (batch, vocab_size) to token ids (batch,)
DecodingPolicy = Callable[[torch.Tensor], torch.Tensor]


class GenerationState(enum.Enum):
    AWAITING_START = "awaiting-start-token"
    GENERATING = "generating"
    FINISHED = "finished"


def greedy(logits: torch.Tensor) -> torch.Tensor:
    """Pick the highest-scoring token for every sequence."""
    return logits.argmax(dim=-1)


class TemperatureSampler:
    """
    Sample the next token from softmax(logits / temperature).

    Args:
        temperature: Must be positive. Lower values sharpen the distribution.
        generator: Optional torch.Generator for reproducible sampling
    """

    def __init__(self, temperature: float = 1.0, generator: Optional[torch.Generator] = None):
        if temperature <= 0:
            raise ValueError(f"temperature must be positive, got {temperature}")
        self.temperature = temperature
        self.generator = generator

    def __call__(self, logits: torch.Tensor) -> torch.Tensor:
        probs = F.softmax(logits / self.temperature, dim=-1)
        return torch.multinomial(probs, num_samples=1, generator=self.generator).squeeze(-1)

    def __repr__(self) -> str:
        return f"TemperatureSampler(temperature={self.temperature})"


class SequenceGenerator:
    """
    Drives a Seq2SeqTransformer through the generation state machine.

    States move AWAITING_START -> GENERATING -> FINISHED. The decoder always
    runs in evaluation mode with gradients disabled.

    With ``use_cache`` each step feeds only the newest token and reuses the
    per-layer key/value projections of earlier positions. Without it the
    whole prefix is decoded again every step. Both give the same tokens.

    Args:
        model: A Seq2SeqTransformer
        start_token: Id placed at position 0 of every output
        end_token: Id that finishes a sequence
        max_length: Longest output, start token included
        policy: Decoding policy. Default: greedy
        use_cache: Whether to decode incrementally. Default: True

    Example:
        >>> generator = SequenceGenerator(model, start_token=1, end_token=2,
        ...                               max_length=20)
        >>> tokens = generator.generate(src)  # (batch, <= 20)
    """

    def __init__(
        self,
        model,
        start_token: int,
        end_token: int,
        max_length: int,
        policy: DecodingPolicy = greedy,
        use_cache: bool = True,
    ):
        if max_length < 1:
            raise ValueError(f"max_length must be at least 1, got {max_length}")
        if max_length > model.decoder.max_length:
            raise ShapeError(
                f"max_length ({max_length}) exceeds the decoder's positional "
                f"table ({model.decoder.max_length})"
            )

        self.model = model
        self.start_token = start_token
        self.end_token = end_token
        self.max_length = max_length
        self.policy = policy
        self.use_cache = use_cache
        self.state = GenerationState.AWAITING_START

    @property
    def fill_token(self) -> int:
        """Id written after a sequence has finished."""
        pad_idx = self.model.pad_idx
        return self.end_token if pad_idx is None else pad_idx

    @torch.no_grad()
    def generate(
        self,
        src: torch.Tensor,
        src_mask: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """
        Generate target sequences for a batch of source sequences.

        Args:
            src: Source token indices of shape (batch, src_len)
            src_mask: Optional source padding mask. Derived from the model's
                      pad_idx when omitted.

        Returns:
            Token indices of shape (batch, generated_len), starting with the
            start token. Positions after a sequence's end token hold
            ``fill_token``.
        """
        model = self.model
        batch_size = src.size(0)
        device = src.device

        if src_mask is None and model.pad_idx is not None:
            src_mask = padding_mask(src, model.pad_idx)

        memory = model.encode(src, src_mask, training=False)

        tgt = torch.full((batch_size, 1), self.start_token, dtype=torch.long, device=device)
        finished = torch.zeros(batch_size, dtype=torch.bool, device=device)
        cache = model.decoder.new_cache() if self.use_cache else None
        self.state = GenerationState.GENERATING
        logger.debug(
            "Generating up to %d tokens for batch of %d (cache=%s, policy=%r)",
            self.max_length, batch_size, self.use_cache, self.policy,
        )

        while tgt.size(1) < self.max_length:
            step_input = tgt[:, -1:] if cache is not None else tgt
            logits = model.decode(
                step_input, memory, memory_mask=src_mask, cache=cache, training=False
            )

            next_token = self.policy(logits[:, -1, :])
            next_token = next_token.masked_fill(finished, self.fill_token)
            tgt = torch.cat([tgt, next_token.unsqueeze(-1)], dim=1)

            finished = finished | (next_token == self.end_token)
            if finished.all():
                break

        self.state = GenerationState.FINISHED
        logger.debug(
            "Generation finished at length %d (%d/%d sequences ended)",
            tgt.size(1), int(finished.sum()), batch_size,
        )
        return tgt
