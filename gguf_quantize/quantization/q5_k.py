"""
Q5_K quantization implementation

Block structure (256 elements, 8 sub-blocks of 32):
- ggml_half d, dmin: super-block scales
- uint8_t scales[12]: 6-bit scales and mins (same packing as Q4_K)
- uint8_t qh[QK_K/8]: fifth bit of each quant
- uint8_t qs[QK_K/2]: low 4 bits of each quant
- Total: 176 bytes per super-block
"""

import numpy as np
import gguf

from .scales import SHIFT_1BIT, to_byte_shape, fp16_bytes, pack_k_scales
from .q4_k import quantize_sub_blocks, pack_nibbles


QK_K = 256
BYTES_PER_BLOCK = 176


def quantize_q5_k(tensor) -> np.ndarray:
    """
    Quantize a float tensor to Q5_K format.

    Returns:
        uint8 array shaped (rows..., bytes per row)
    """
    n_blocks, q, d, dmin, ls, lm = quantize_sub_blocks(tensor, 31)

    # Sub-block j keeps its fifth bits in bit j of qh
    high = (q >> 4) & 1
    qh = np.bitwise_or.reduce(high << SHIFT_1BIT.reshape(1, 8, 1), axis=1)

    packed = np.concatenate([
        fp16_bytes(d),
        fp16_bytes(dmin),
        pack_k_scales(ls, lm),
        qh,
        pack_nibbles(q),
    ], axis=-1)
    return to_byte_shape(packed, np.shape(tensor), gguf.GGMLQuantizationType.Q5_K)
