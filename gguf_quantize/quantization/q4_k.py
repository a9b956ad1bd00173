"""
Q4_K quantization implementation

Block structure (256 elements, 8 sub-blocks of 32):
- ggml_half d: super-block scale for the scales
- ggml_half dmin: super-block scale for the mins
- uint8_t scales[12]: 6-bit scales and mins
- uint8_t qs[QK_K/2]: 4-bit quants
- Total: 144 bytes per super-block
"""

import numpy as np
import gguf

from .scales import (
    to_blocks, to_byte_shape, safe_divide, unsigned_quants, affine_ranges,
    fp16_round, fp16_bytes, pack_k_scales,
)


QK_K = 256
BYTES_PER_BLOCK = 144


def quantize_sub_blocks(tensor, nmax: int):
    """
    Scale/min selection shared by Q4_K and Q5_K.

    Returns:
        tuple: (n_blocks, uint8 quants shaped (n, 8, 32), d, dmin, ls, lm)
    """
    blocks = to_blocks(tensor, QK_K)
    n_blocks = blocks.shape[0]
    sub = blocks.reshape(n_blocks, QK_K // 32, 32)

    scales, mins = affine_ranges(sub, nmax)
    d, ls = unsigned_quants(scales, 63)
    dmin, lm = unsigned_quants(mins, 63)
    d, dmin = fp16_round(d), fp16_round(dmin)

    dl = (d * ls)[..., None]
    ml = (dmin * lm)[..., None]
    q = np.clip(np.rint(safe_divide(sub + ml, dl)), 0, nmax).astype(np.uint8)
    return n_blocks, q, d, dmin, ls, lm


def pack_nibbles(q: np.ndarray) -> np.ndarray:
    """Sub-blocks 2c and 2c+1 share the low/high nibbles of qs[c*32:(c+1)*32]"""
    n_blocks = q.shape[0]
    q = (q & 0xF).reshape(n_blocks, 4, 2, 32)
    return (q[:, :, 0] | (q[:, :, 1] << 4)).reshape(n_blocks, QK_K // 2)


def quantize_q4_k(tensor) -> np.ndarray:
    """
    Quantize a float tensor to Q4_K format.

    Returns:
        uint8 array shaped (rows..., bytes per row)
    """
    n_blocks, q, d, dmin, ls, lm = quantize_sub_blocks(tensor, 15)

    packed = np.concatenate([
        fp16_bytes(d),
        fp16_bytes(dmin),
        pack_k_scales(ls, lm),
        pack_nibbles(q),
    ], axis=-1)
    return to_byte_shape(packed, np.shape(tensor), gguf.GGMLQuantizationType.Q4_K)
