"""
Q2_K quantization implementation - simplified version

Block structure (256 elements, 16 sub-blocks of 16):
- uint8_t scales[QK_K/16]: 4-bit scale (low nibble) and 4-bit min (high nibble)
- uint8_t qs[QK_K/4]: 2-bit quants, four per byte
- ggml_half d: super-block scale for the scales
- ggml_half dmin: super-block scale for the mins
- Total: 84 bytes per super-block
"""

import numpy as np
import gguf

from .scales import (
    SHIFT_2BIT, to_blocks, to_byte_shape, safe_divide, unsigned_quants,
    affine_ranges, fp16_round, fp16_bytes,
)


QK_K = 256
BYTES_PER_BLOCK = 84


def quantize_q2_k(tensor) -> np.ndarray:
    """
    Quantize a float tensor to Q2_K format.

    Returns:
        uint8 array shaped (rows..., bytes per row)
    """
    blocks = to_blocks(tensor, QK_K)
    n_blocks = blocks.shape[0]
    sub = blocks.reshape(n_blocks, QK_K // 16, 16)

    scales, mins = affine_ranges(sub, 3)
    d, ls = unsigned_quants(scales, 15)
    dmin, lm = unsigned_quants(mins, 15)
    d, dmin = fp16_round(d), fp16_round(dmin)

    dl = (d * ls)[..., None]
    ml = (dmin * lm)[..., None]
    L = np.clip(np.rint(safe_divide(sub + ml, dl)), 0, 3).astype(np.uint8)

    # Element h*128 + k*32 + l lives in bits 2k..2k+1 of qs[h*32 + l]
    L = L.reshape(n_blocks, 2, 4, 32)
    qs = np.bitwise_or.reduce(L << SHIFT_2BIT.reshape(1, 1, 4, 1), axis=2)

    packed = np.concatenate([
        (ls | (lm << 4)).astype(np.uint8),
        qs.reshape(n_blocks, QK_K // 4),
        fp16_bytes(d),
        fp16_bytes(dmin),
    ], axis=-1)
    return to_byte_shape(packed, np.shape(tensor), gguf.GGMLQuantizationType.Q2_K)
