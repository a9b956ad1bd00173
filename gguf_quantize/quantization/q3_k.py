"""
Q3_K quantization implementation

Block structure (256 elements, 16 sub-blocks of 16):
- uint8_t hmask[QK_K/8]: high bit of each 3-bit quant
- uint8_t qs[QK_K/4]: low 2 bits of each quant
- uint8_t scales[12]: 16 signed 6-bit sub-block scales
- ggml_half d: super-block scale
- Total: 110 bytes per super-block
"""

import numpy as np
import gguf

from .scales import (
    SHIFT_1BIT, SHIFT_2BIT, to_blocks, to_byte_shape, safe_divide,
    symmetric_quants, fp16_round, fp16_bytes,
)


QK_K = 256
BYTES_PER_BLOCK = 110


def _pack_scales(ls: np.ndarray) -> np.ndarray:
    """Pack sixteen 6-bit scales (0..63) into 12 bytes"""
    n_blocks = ls.shape[0]
    ls = ls.astype(np.uint8)
    packed = np.empty((n_blocks, 12), dtype=np.uint8)
    packed[:, :8] = (ls[:, :8] & 0xF) | ((ls[:, 8:] & 0xF) << 4)
    high = ((ls >> 4) & 3).reshape(n_blocks, 4, 4)
    packed[:, 8:] = np.bitwise_or.reduce(high << SHIFT_2BIT.reshape(1, 4, 1), axis=1)
    return packed


def quantize_q3_k(tensor) -> np.ndarray:
    """
    Quantize a float tensor to Q3_K format.

    Returns:
        uint8 array shaped (rows..., bytes per row)
    """
    blocks = to_blocks(tensor, QK_K)
    n_blocks = blocks.shape[0]
    sub = blocks.reshape(n_blocks, QK_K // 16, 16)

    scales, _ = symmetric_quants(sub, 4)
    d, ls = symmetric_quants(scales[..., 0], 32)
    d = fp16_round(d)

    dl = (d * ls)[..., None]
    q = np.clip(np.rint(safe_divide(sub, dl)), -4, 3)
    L = (q + 4).astype(np.uint8).reshape(n_blocks, QK_K)

    low = (L & 3).reshape(n_blocks, 2, 4, 32)
    qs = np.bitwise_or.reduce(low << SHIFT_2BIT.reshape(1, 1, 4, 1), axis=2)

    # Element j*32 + l keeps its high bit in bit j of hmask[l]
    high = (L >> 2).reshape(n_blocks, 8, 32)
    hmask = np.bitwise_or.reduce(high << SHIFT_1BIT.reshape(1, 8, 1), axis=1)

    packed = np.concatenate([
        hmask,
        qs.reshape(n_blocks, QK_K // 4),
        _pack_scales(ls + 32),
        fp16_bytes(d),
    ], axis=-1)
    return to_byte_shape(packed, np.shape(tensor), gguf.GGMLQuantizationType.Q3_K)
