"""
Q6_K quantization implementation

Q6_K format (from llama.cpp ggml-quants.c):
- Super-block size: 256 elements (QK_K = 256)
- Structure: 16 blocks of 16 elements each
- Each block has an int8 scale factor
- One FP16 super-block scale factor
- 6-bit quantization per element (range: -32 to 31)

Block structure (from ggml-common.h):
- uint8_t ql[QK_K/2]: lower 4 bits of quantized values (128 bytes)
- uint8_t qh[QK_K/4]: upper 2 bits of quantized values (64 bytes)
- int8_t scales[QK_K/16]: per-block scales (16 bytes)
- ggml_half d: super-block scale (2 bytes)
- Total: 210 bytes per super-block
"""

import numpy as np
import gguf

from .scales import (
    SHIFT_2BIT, to_blocks, to_byte_shape, safe_divide, symmetric_quants,
    fp16_round, fp16_bytes,
)


QK_K = 256
BYTES_PER_BLOCK = 210


def quantize_q6_k(tensor) -> np.ndarray:
    """
    Quantize a float tensor to Q6_K format.

    Returns:
        uint8 array shaped (rows..., bytes per row)
    """
    blocks = to_blocks(tensor, QK_K)
    n_blocks = blocks.shape[0]
    sub = blocks.reshape(n_blocks, QK_K // 16, 16)

    # Step 1: scale of each 16-element block, then int8 scales for those
    scales, _ = symmetric_quants(sub, 32)
    d, ls = symmetric_quants(scales[..., 0], 128)
    d = fp16_round(d)

    # Step 2: requantize with the final scales
    dl = (d * ls)[..., None]
    q = np.clip(np.rint(safe_divide(sub, dl)), -32, 31)
    L = (q + 32).astype(np.uint8).reshape(n_blocks, 2, 4, 32)

    # Step 3: pack bits, two 128-element halves with values at stride 32
    ql = (L[:, :, :2] & 0xF) | ((L[:, :, 2:] & 0xF) << 4)
    qh = np.bitwise_or.reduce((L >> 4) << SHIFT_2BIT.reshape(1, 1, 4, 1), axis=2)

    packed = np.concatenate([
        ql.reshape(n_blocks, QK_K // 2),
        qh.reshape(n_blocks, QK_K // 4),
        ls.astype(np.int8).view(np.uint8),
        fp16_bytes(d),
    ], axis=-1)
    return to_byte_shape(packed, np.shape(tensor), gguf.GGMLQuantizationType.Q6_K)
