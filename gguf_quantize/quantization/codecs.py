"""
Codec registry - every supported encoding with its ggml type and kernels

The registry is built once at import time and never mutated. Block and type
sizes come from gguf.GGML_QUANT_SIZES.
"""

from enum import Enum
from types import MappingProxyType
from typing import Callable, NamedTuple, Optional, Union

import numpy as np
import gguf
from gguf.quants import quantize as gguf_quantize, dequantize as gguf_dequantize

from .q8_1 import quantize_q8_1, dequantize_q8_1
from .q2_k import quantize_q2_k
from .q3_k import quantize_q3_k
from .q4_k import quantize_q4_k
from .q5_k import quantize_q5_k
from .q6_k import quantize_q6_k
from .q8_k import quantize_q8_k, dequantize_q8_k


class Codec(Enum):
    """The fourteen encodings a tensor can be written with"""

    Q4_0 = "q4_0"
    Q4_1 = "q4_1"
    Q5_0 = "q5_0"
    Q5_1 = "q5_1"
    Q8_0 = "q8_0"
    Q8_1 = "q8_1"
    Q2K = "q2k"
    Q3K = "q3k"
    Q4K = "q4k"
    Q5K = "q5k"
    Q6K = "q6k"
    Q8K = "q8k"
    F16 = "f16"
    F32 = "f32"

    @classmethod
    def parse(cls, name: Union[str, "Codec"]) -> "Codec":
        """
        Look up a codec by name.

        Accepts the CLI spelling (``q4k``, ``q8_0``) as well as the ggml
        spelling (``Q4_K``, ``Q8_0``).

        Raises:
            ValueError: If the name is not a known codec
        """
        if isinstance(name, Codec):
            return name
        key = str(name).strip().lower()
        if key.endswith("_k"):
            key = key[:-2] + "k"
        try:
            return cls(key)
        except ValueError:
            raise ValueError(
                f"Unsupported quantization type: {name}. "
                f"Supported: {[c.value for c in cls]}"
            ) from None

    @classmethod
    def from_ggml_type(cls, ggml_type) -> Optional["Codec"]:
        """The codec stored as ``ggml_type``, or None if it is not one of ours"""
        return _BY_GGML_TYPE.get(ggml_type)

    @property
    def spec(self) -> "CodecSpec":
        return CODECS[self]

    @property
    def ggml_type(self) -> gguf.GGMLQuantizationType:
        return CODECS[self].ggml_type

    @property
    def block_size(self) -> int:
        return CODECS[self].block_size

    @property
    def type_size(self) -> int:
        return CODECS[self].type_size

    @property
    def is_float(self) -> bool:
        return self in (Codec.F16, Codec.F32)


class CodecSpec(NamedTuple):
    """Everything the pipeline needs to know about one codec"""

    ggml_type: gguf.GGMLQuantizationType
    block_size: int
    type_size: int
    encode: Callable[[np.ndarray], np.ndarray]
    decode: Callable[[np.ndarray], np.ndarray]


def _delegate(qtype):
    """Encoder and decoder handled by gguf.quants"""

    def encode(data):
        return gguf_quantize(np.ascontiguousarray(data, dtype=np.float32), qtype)

    def decode(data):
        return gguf_dequantize(data, qtype)

    return encode, decode


def _build_registry():
    T = gguf.GGMLQuantizationType
    # codec -> (ggml type, local encoder, local decoder); None uses gguf.quants
    kernels = {
        Codec.Q4_0: (T.Q4_0, None, None),
        Codec.Q4_1: (T.Q4_1, None, None),
        Codec.Q5_0: (T.Q5_0, None, None),
        Codec.Q5_1: (T.Q5_1, None, None),
        Codec.Q8_0: (T.Q8_0, None, None),
        Codec.Q8_1: (T.Q8_1, quantize_q8_1, dequantize_q8_1),
        Codec.Q2K: (T.Q2_K, quantize_q2_k, None),
        Codec.Q3K: (T.Q3_K, quantize_q3_k, None),
        Codec.Q4K: (T.Q4_K, quantize_q4_k, None),
        Codec.Q5K: (T.Q5_K, quantize_q5_k, None),
        Codec.Q6K: (T.Q6_K, quantize_q6_k, None),
        Codec.Q8K: (T.Q8_K, quantize_q8_k, dequantize_q8_k),
        Codec.F16: (T.F16, None, None),
        Codec.F32: (T.F32, None, None),
    }
    registry = {}
    for codec, (qtype, encode_fn, decode_fn) in kernels.items():
        gguf_encode, gguf_decode = _delegate(qtype)
        block_size, type_size = gguf.GGML_QUANT_SIZES[qtype]
        registry[codec] = CodecSpec(
            qtype, block_size, type_size,
            encode_fn or gguf_encode,
            decode_fn or gguf_decode,
        )
    return MappingProxyType(registry)


CODECS = _build_registry()

_BY_GGML_TYPE = MappingProxyType({spec.ggml_type: codec for codec, spec in CODECS.items()})


def encode(codec: Codec, data: np.ndarray) -> np.ndarray:
    """
    Encode a float tensor with ``codec``.

    Returns:
        float32/float16 array for the float codecs, otherwise a uint8 array
        shaped (rows..., bytes per row)

    Raises:
        ValueError: If the last dimension is not a multiple of the block size
    """
    spec = CODECS[codec]
    if spec.block_size > 1 and (np.ndim(data) == 0 or np.shape(data)[-1] % spec.block_size != 0):
        raise ValueError(
            f"Tensor shape {np.shape(data)} is not a multiple of "
            f"{codec.value} block size ({spec.block_size})"
        )
    return spec.encode(data)


def decode(ggml_type, data: np.ndarray) -> np.ndarray:
    """
    Dequantize stored data of any ggml type back to float32.

    Types outside the fourteen codecs (BF16, the IQ family, ...) are handed
    to gguf.quants directly.
    """
    codec = Codec.from_ggml_type(ggml_type)
    if codec is not None:
        return CODECS[codec].decode(data).astype(np.float32, copy=False)
    return gguf_dequantize(data, ggml_type).astype(np.float32, copy=False)
