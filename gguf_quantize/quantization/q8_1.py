"""
Q8_1 quantization implementation

Q8_1 format:
- Block size: 32 elements
- Each block: FP16 scale (d) + FP16 sum (s = d * sum(qs)) + 32 int8 values
- Total: 36 bytes per block
"""

import numpy as np
import gguf

from .scales import to_blocks, to_byte_shape, from_byte_shape, fp16_bytes


QK8_1 = 32
BYTES_PER_BLOCK = 36


def quantize_q8_1(tensor) -> np.ndarray:
    """
    Quantize a float tensor to Q8_1 format.

    Args:
        tensor: numpy array of floats whose last dimension is a multiple of 32

    Returns:
        uint8 array shaped (rows..., bytes per row)
    """
    blocks = to_blocks(tensor, QK8_1)

    amax = np.abs(blocks).max(axis=-1, keepdims=True)
    d = amax / 127
    with np.errstate(divide="ignore"):
        inv = np.where(d == 0, 0.0, 1.0 / d)
    qs = np.clip(np.rint(blocks * inv), -127, 127).astype(np.int8)
    s = d * qs.astype(np.float32).sum(axis=-1, keepdims=True)

    packed = np.concatenate([fp16_bytes(d), fp16_bytes(s), qs.view(np.uint8)], axis=-1)
    return to_byte_shape(packed, np.shape(tensor), gguf.GGMLQuantizationType.Q8_1)


def dequantize_q8_1(data: np.ndarray) -> np.ndarray:
    """
    Dequantize byte-shaped Q8_1 data back to float32 with its logical shape.
    """
    blocks, shape = from_byte_shape(data, BYTES_PER_BLOCK, gguf.GGMLQuantizationType.Q8_1)
    d = blocks[:, 0:2].copy().view("<f2").astype(np.float32)
    qs = blocks[:, 4:].copy().view(np.int8).astype(np.float32)
    return (d * qs).reshape(shape)
