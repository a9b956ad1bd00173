"""
Q8_K quantization implementation

Q8_K is the intermediate format llama.cpp uses for k-quant dot products.

Block structure:
- float d: super-block scale (4 bytes)
- int8_t qs[QK_K]: quantized values (256 bytes)
- int16_t bsums[QK_K/16]: sums of each group of 16 quants (32 bytes)
- Total: 292 bytes per super-block
"""

import numpy as np
import gguf

from .scales import to_blocks, to_byte_shape, from_byte_shape, symmetric_quants


QK_K = 256
BYTES_PER_BLOCK = 4 + QK_K + QK_K // 8


def quantize_q8_k(tensor) -> np.ndarray:
    """
    Quantize a float tensor to Q8_K format.

    Returns:
        uint8 array shaped (rows..., bytes per row)
    """
    blocks = to_blocks(tensor, QK_K)
    n_blocks = blocks.shape[0]

    d, q = symmetric_quants(blocks, 128)
    qs = q.astype(np.int8)
    bsums = q.reshape(n_blocks, QK_K // 16, 16).sum(axis=-1).astype("<i2")

    packed = np.concatenate([
        np.ascontiguousarray(d.astype("<f4")).view(np.uint8),
        qs.view(np.uint8),
        np.ascontiguousarray(bsums).view(np.uint8),
    ], axis=-1)
    return to_byte_shape(packed, np.shape(tensor), gguf.GGMLQuantizationType.Q8_K)


def dequantize_q8_k(data: np.ndarray) -> np.ndarray:
    """Dequantize byte-shaped Q8_K data back to float32 with its logical shape"""
    blocks, shape = from_byte_shape(data, BYTES_PER_BLOCK, gguf.GGMLQuantizationType.Q8_K)
    d = blocks[:, 0:4].copy().view("<f4")
    qs = blocks[:, 4:4 + QK_K].copy().view(np.int8).astype(np.float32)
    return (d * qs).reshape(shape)
