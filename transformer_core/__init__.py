"""
Attention-based sequence transformation pipeline in PyTorch.

Scaled dot-product attention, multi-head attention, post-norm transformer
blocks, sinusoidal positional encoding, encoder and decoder towers and their
sequence-to-sequence composition, written without torch.nn.Transformer or
torch.nn.MultiheadAttention.
"""

__version__ = "0.1.0"

from transformer_core.errors import ShapeError
from transformer_core.basics import simple_attention, pairwise_attention, matrix_attention
from transformer_core.attention import (
    scaled_dot_product_attention,
    ScaledDotProductAttention,
    MultiHeadAttention,
    causal_mask,
    padding_mask,
    merge_masks,
    check_mask_shape,
)
from transformer_core.cache import KeyValueCache, LayerCache, DecoderCache
from transformer_core.feedforward import PositionwiseFeedForward
from transformer_core.positional_encoding import PositionalEncoding
from transformer_core.embedding import TokenEmbedding
from transformer_core.stack import LayerStack, SequenceLayer
from transformer_core.encoder import TransformerBlock, TransformerEncoder
from transformer_core.decoder import DecoderBlock, TransformerDecoder
from transformer_core.generation import (
    GenerationState,
    SequenceGenerator,
    TemperatureSampler,
    greedy,
)
from transformer_core.transformer import Seq2SeqTransformer
