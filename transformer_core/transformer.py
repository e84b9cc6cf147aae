"""
Sequence-to-sequence composition of one encoder and one decoder.
"""

import logging
from typing import Iterator, Optional

import torch
import torch.nn as nn

from transformer_core.attention import causal_mask, merge_masks, padding_mask
from transformer_core.cache import DecoderCache
from transformer_core.decoder import TransformerDecoder
from transformer_core.encoder import TransformerEncoder
from transformer_core.generation import DecodingPolicy, SequenceGenerator, greedy
from transformer_core.init import (
    count_parameters,
    init_normal_weights,
    init_transformer_weights,
    trainable_parameters,
)

logger = logging.getLogger(__name__)


class Seq2SeqTransformer(nn.Module):
    """
    Encoder-decoder Transformer.

    The encoder turns source tokens into a memory tensor; every decoder block
    cross-attends to that memory, so the target logits are conditioned on the
    source.

    Args:
        src_vocab_size: Size of the source vocabulary
        tgt_vocab_size: Size of the target vocabulary. Defaults to src_vocab_size.
        feature_dim: Model feature size. Default: 512
        num_heads: Number of attention heads. Default: 8
        num_encoder_layers: Number of encoder blocks. Default: 6
        num_decoder_layers: Number of decoder blocks. Default: 6
        ff_dim: Feed-forward hidden size. Default: 2048
        dropout: Dropout probability. Default: 0.1
        max_length: Longest source or target sequence. Default: 5000
        pad_idx: Padding token id. When set, padding masks are derived from
                 the tokens. Default: None
        share_embeddings: Let the decoder reuse the encoder's embedding table.
                          Requires equal vocabulary sizes. Default: False

    Example:
        >>> model = Seq2SeqTransformer(src_vocab_size=100, feature_dim=16,
        ...                            num_heads=2, num_encoder_layers=1,
        ...                            num_decoder_layers=1, ff_dim=64)
        >>> src = torch.tensor([[5, 23, 67, 89]])
        >>> tgt = torch.tensor([[1, 45, 78]])
        >>> model(src, tgt).shape
        torch.Size([1, 3, 100])
    """

    def __init__(
        self,
        src_vocab_size: int,
        tgt_vocab_size: Optional[int] = None,
        feature_dim: int = 512,
        num_heads: int = 8,
        num_encoder_layers: int = 6,
        num_decoder_layers: int = 6,
        ff_dim: int = 2048,
        dropout: float = 0.1,
        max_length: int = 5000,
        pad_idx: Optional[int] = None,
        share_embeddings: bool = False,
    ):
        super().__init__()

        if tgt_vocab_size is None:
            tgt_vocab_size = src_vocab_size
        if share_embeddings and src_vocab_size != tgt_vocab_size:
            raise ValueError(
                "share_embeddings requires equal vocabulary sizes, got "
                f"{src_vocab_size} and {tgt_vocab_size}"
            )

        self.src_vocab_size = src_vocab_size
        self.tgt_vocab_size = tgt_vocab_size
        self.feature_dim = feature_dim
        self.num_heads = num_heads
        self.num_encoder_layers = num_encoder_layers
        self.num_decoder_layers = num_decoder_layers
        self.ff_dim = ff_dim
        self.pad_idx = pad_idx
        self.share_embeddings = share_embeddings

        self.encoder = TransformerEncoder(
            vocab_size=src_vocab_size,
            feature_dim=feature_dim,
            num_heads=num_heads,
            ff_dim=ff_dim,
            num_layers=num_encoder_layers,
            max_length=max_length,
            dropout=dropout,
            padding_idx=pad_idx,
        )
        self.decoder = TransformerDecoder(
            vocab_size=tgt_vocab_size,
            feature_dim=feature_dim,
            num_heads=num_heads,
            ff_dim=ff_dim,
            num_layers=num_decoder_layers,
            max_length=max_length,
            dropout=dropout,
            padding_idx=pad_idx,
        )

        self.init_weights()

        if share_embeddings:
            self.decoder.embedding = self.encoder.embedding

        logger.info(
            "Seq2SeqTransformer ready: %s, %d trainable parameters",
            self.extra_repr(),
            count_parameters(self),
        )

    @classmethod
    def from_config(cls, config) -> "Seq2SeqTransformer":
        """Build a model from a ``configs.model_config.ModelConfig``."""
        return cls(
            src_vocab_size=config.src_vocab_size,
            tgt_vocab_size=config.tgt_vocab_size,
            feature_dim=config.feature_dim,
            num_heads=config.num_heads,
            num_encoder_layers=config.num_encoder_layers,
            num_decoder_layers=config.num_decoder_layers,
            ff_dim=config.ff_dim,
            dropout=config.dropout,
            max_length=config.max_length,
            pad_idx=config.pad_idx,
            share_embeddings=config.share_embeddings,
        )

    def init_weights(self, method: str = "xavier") -> None:
        """
        Reinitialize all weights.

        Args:
            method: "xavier" (Xavier uniform, as in the original paper) or
                    "normal" (std 0.02)
        """
        if method == "xavier":
            self.apply(lambda m: init_transformer_weights(m, feature_dim=self.feature_dim))
        elif method == "normal":
            self.apply(init_normal_weights)
        else:
            raise ValueError(f"Unknown initialization method: {method}")
        logger.debug("Initialized weights with method=%s", method)

    def trainable_parameters(self) -> Iterator[nn.Parameter]:
        return trainable_parameters(self)

    def encode(
        self,
        src: torch.Tensor,
        src_mask: Optional[torch.Tensor] = None,
        training: Optional[bool] = None,
    ) -> torch.Tensor:
        """
        Args:
            src: Source token indices of shape (batch, src_len)
            src_mask: Optional source padding mask
            training: Whether dropout is active. Defaults to ``self.training``.

        Returns:
            Memory tensor of shape (batch, src_len, feature_dim)
        """
        training = self.training if training is None else training
        return self.encoder(src, padding_mask=src_mask, training=training)

    def decode(
        self,
        tgt: torch.Tensor,
        memory: torch.Tensor,
        tgt_mask: Optional[torch.Tensor] = None,
        memory_mask: Optional[torch.Tensor] = None,
        cache: Optional[DecoderCache] = None,
        training: Optional[bool] = None,
    ) -> torch.Tensor:
        """
        Args:
            tgt: Target token indices of shape (batch, tgt_len)
            memory: Encoder output of shape (batch, src_len, feature_dim)
            tgt_mask: Optional self-attention mask; causal when omitted
            memory_mask: Optional source padding mask
            cache: Optional decoder cache for incremental decoding
            training: Whether dropout is active. Defaults to ``self.training``.

        Returns:
            Logits of shape (batch, tgt_len, tgt_vocab_size)
        """
        training = self.training if training is None else training
        return self.decoder(
            tgt,
            memory,
            causal_mask=tgt_mask,
            memory_mask=memory_mask,
            cache=cache,
            training=training,
        )

    def forward(
        self,
        src: torch.Tensor,
        tgt: torch.Tensor,
        src_mask: Optional[torch.Tensor] = None,
        tgt_mask: Optional[torch.Tensor] = None,
        memory_mask: Optional[torch.Tensor] = None,
        training: Optional[bool] = None,
    ) -> torch.Tensor:
        """
        Encode ``src`` and decode ``tgt`` against it (teacher forcing).

        Args:
            src: Source token indices of shape (batch, src_len)
            tgt: Target token indices of shape (batch, tgt_len)
            src_mask: Source padding mask. Derived from pad_idx when omitted.
            tgt_mask: Target self-attention mask. Causal (merged with target
                      padding when pad_idx is set) when omitted.
            memory_mask: Cross-attention mask. Defaults to src_mask.
            training: Whether dropout is active. Defaults to ``self.training``.

        Returns:
            Logits of shape (batch, tgt_len, tgt_vocab_size)
        """
        training = self.training if training is None else training

        if src_mask is None and self.pad_idx is not None:
            src_mask = padding_mask(src, self.pad_idx)
        if tgt_mask is None:
            tgt_mask = self._target_mask(tgt)
        if memory_mask is None:
            memory_mask = src_mask

        memory = self.encode(src, src_mask, training=training)
        return self.decode(tgt, memory, tgt_mask, memory_mask, training=training)

    def _target_mask(self, tgt: torch.Tensor) -> torch.Tensor:
        mask = causal_mask(tgt.size(1), device=tgt.device)
        if self.pad_idx is None:
            return mask
        return merge_masks(mask, padding_mask(tgt, self.pad_idx))

    def generate(
        self,
        src: torch.Tensor,
        max_length: int,
        start_token: int,
        end_token: int,
        src_mask: Optional[torch.Tensor] = None,
        policy: DecodingPolicy = greedy,
        use_cache: bool = True,
    ) -> torch.Tensor:
        """
        Generate target sequences autoregressively.

        See ``SequenceGenerator`` for the stopping rules.

        Returns:
            Token indices of shape (batch, generated_len)
        """
        generator = SequenceGenerator(
            self,
            start_token=start_token,
            end_token=end_token,
            max_length=max_length,
            policy=policy,
            use_cache=use_cache,
        )
        return generator.generate(src, src_mask)

    def extra_repr(self) -> str:
        return (
            f"src_vocab_size={self.src_vocab_size}, "
            f"tgt_vocab_size={self.tgt_vocab_size}, "
            f"feature_dim={self.feature_dim}, num_heads={self.num_heads}, "
            f"num_encoder_layers={self.num_encoder_layers}, "
            f"num_decoder_layers={self.num_decoder_layers}, "
            f"ff_dim={self.ff_dim}"
        )
