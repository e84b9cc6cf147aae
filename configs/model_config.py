"""
Configuration classes for the attention pipeline.

Defaults follow the "base" model of "Attention Is All You Need".
"""

import json
from dataclasses import asdict, dataclass
from typing import Optional

from transformer_core.generation import (
    DecodingPolicy,
    SequenceGenerator,
    TemperatureSampler,
    greedy,
)


@dataclass
class ModelConfig:
    """
    Hyperparameters of a Seq2SeqTransformer.

    - feature_dim = 512 (model dimension)
    - num_heads = 8
    - num_encoder_layers = num_decoder_layers = 6
    - ff_dim = 2048 (feed-forward inner dimension)
    - dropout = 0.1
    - max_length = 512
    """

    # Model architecture
    feature_dim: int = 512
    num_heads: int = 8
    num_encoder_layers: int = 6
    num_decoder_layers: int = 6
    ff_dim: int = 2048

    # Vocabulary
    src_vocab_size: int = 32000
    tgt_vocab_size: int = 32000

    # Regularization
    dropout: float = 0.1

    # Longest source or target sequence
    max_length: int = 512

    # Padding token index, None disables padding masks
    pad_idx: Optional[int] = 0

    share_embeddings: bool = False

    @property
    def head_dim(self) -> int:
        """Feature size of each attention head."""
        return self.feature_dim // self.num_heads

    def __post_init__(self):
        """Validate configuration parameters."""
        for name in (
            "feature_dim",
            "num_heads",
            "num_encoder_layers",
            "num_decoder_layers",
            "ff_dim",
            "src_vocab_size",
            "tgt_vocab_size",
            "max_length",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        # num_heads is positive here, so the modulo is safe
        if self.feature_dim % self.num_heads != 0:
            raise ValueError(
                f"feature_dim ({self.feature_dim}) must be divisible by "
                f"num_heads ({self.num_heads})"
            )
        if not 0 <= self.dropout < 1:
            raise ValueError(f"dropout must be in [0, 1), got {self.dropout}")
        if self.pad_idx is not None and not (
            0 <= self.pad_idx < min(self.src_vocab_size, self.tgt_vocab_size)
        ):
            raise ValueError(f"pad_idx {self.pad_idx} is outside the vocabulary")
        if self.share_embeddings and self.src_vocab_size != self.tgt_vocab_size:
            raise ValueError("share_embeddings requires equal vocabulary sizes")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "ModelConfig":
        return cls(**config_dict)

    def save(self, path: str) -> None:
        """Save config to JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "ModelConfig":
        """Load config from JSON file."""
        with open(path, "r") as f:
            config_dict = json.load(f)
        return cls.from_dict(config_dict)


@dataclass
class GenerationConfig:
    """
    Settings for autoregressive generation.

    A temperature of 0 selects greedy decoding; anything above samples.
    """

    max_length: int = 128
    start_token: int = 1
    end_token: int = 2
    temperature: float = 0.0
    use_cache: bool = True

    def __post_init__(self):
        if self.max_length < 1:
            raise ValueError(f"max_length must be at least 1, got {self.max_length}")
        if self.temperature < 0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")

    def policy(self) -> DecodingPolicy:
        if self.temperature == 0:
            return greedy
        return TemperatureSampler(self.temperature)

    def make_generator(self, model) -> SequenceGenerator:
        return SequenceGenerator(
            model,
            start_token=self.start_token,
            end_token=self.end_token,
            max_length=self.max_length,
            policy=self.policy(),
            use_cache=self.use_cache,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "GenerationConfig":
        return cls(**config_dict)


def get_base_config() -> ModelConfig:
    """Get the base Transformer configuration from the paper."""
    return ModelConfig()


def get_small_config() -> ModelConfig:
    """A configuration small enough for CPU experiments and tests."""
    return ModelConfig(
        feature_dim=64,
        num_heads=4,
        num_encoder_layers=2,
        num_decoder_layers=2,
        ff_dim=256,
        src_vocab_size=1000,
        tgt_vocab_size=1000,
        max_length=128,
    )
