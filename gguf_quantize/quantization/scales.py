"""
Block helpers shared by the numpy kernels

The kernels work on whole arrays of blocks at once instead of looping over
rows. Scale selection is the plain min/max ("_ref") variant of llama.cpp's
search: the element with the largest magnitude defines the scale.
"""

import numpy as np
from gguf.quants import quant_shape_to_byte_shape, quant_shape_from_byte_shape


GROUP_MAX_EPS = 1e-15

# Bit offsets used when four 2-bit values share one byte
SHIFT_2BIT = np.array([0, 2, 4, 6], dtype=np.uint8)

# Bit offsets used when eight 1-bit values share one byte
SHIFT_1BIT = np.arange(8, dtype=np.uint8)


def to_blocks(tensor, block_size: int) -> np.ndarray:
    """
    Split a tensor into rows of ``block_size`` float32 elements.

    Raises:
        ValueError: If the last dimension is not a multiple of block_size
    """
    data = np.asarray(tensor, dtype=np.float32)
    if data.ndim == 0 or data.shape[-1] % block_size != 0:
        raise ValueError(
            f"Tensor shape {data.shape} is not a multiple of block size {block_size}"
        )
    return data.reshape(-1, block_size)


def to_byte_shape(packed: np.ndarray, shape, qtype) -> np.ndarray:
    """Reshape packed blocks to the (rows..., bytes per row) layout gguf uses"""
    return np.ascontiguousarray(packed, dtype=np.uint8).reshape(
        quant_shape_to_byte_shape(shape, qtype)
    )


def from_byte_shape(data: np.ndarray, type_size: int, qtype):
    """Split byte-shaped data into blocks, returning (blocks, logical shape)"""
    data = np.ascontiguousarray(data).view(np.uint8)
    return data.reshape(-1, type_size), quant_shape_from_byte_shape(data.shape, qtype)


def safe_divide(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Element-wise a / b, yielding 0 where b is 0"""
    a, b = np.broadcast_arrays(a, b)
    return np.divide(a, b, out=np.zeros(a.shape, dtype=np.float32), where=b != 0)


def symmetric_quants(x: np.ndarray, nmax: int):
    """
    Signed quantization over the last axis.

    The element with the largest magnitude maps to ``-nmax``; every other
    element lands in ``[-nmax, nmax - 1]``.

    Returns:
        tuple: (scale with a trailing axis of 1, int32 quants)
    """
    imax = np.abs(x).argmax(axis=-1)[..., None]
    vmax = np.take_along_axis(x, imax, axis=-1)
    with np.errstate(divide="ignore", invalid="ignore"):
        iscale = np.where(np.abs(vmax) < GROUP_MAX_EPS, 0.0, -nmax / vmax)
        scale = np.where(iscale == 0, 0.0, 1.0 / iscale)
    q = np.clip(np.rint(x * iscale), -nmax, nmax - 1)
    return scale.astype(np.float32), q.astype(np.int32)


def unsigned_quants(x: np.ndarray, nmax: int):
    """
    Quantize non-negative values over the last axis to ``[0, nmax]``.

    Returns:
        tuple: (scale with a trailing axis of 1, int32 quants)
    """
    vmax = x.max(axis=-1, keepdims=True)
    with np.errstate(divide="ignore", invalid="ignore"):
        iscale = np.where(vmax < GROUP_MAX_EPS, 0.0, nmax / vmax)
    q = np.clip(np.rint(x * iscale), 0, nmax)
    return (vmax / nmax).astype(np.float32), q.astype(np.int32)


def affine_ranges(sub: np.ndarray, nmax: int):
    """
    Per sub-block scale and (positive) min offset for asymmetric codecs.

    Values are reconstructed as ``scale * q - offset`` with q in ``[0, nmax]``.
    """
    mn = np.minimum(sub.min(axis=-1), 0.0)
    mx = sub.max(axis=-1)
    return (mx - mn) / nmax, -mn


def fp16_round(x: np.ndarray) -> np.ndarray:
    """Round float32 values through float16, the precision stored on disk"""
    return x.astype(np.float16).astype(np.float32)


def fp16_bytes(x: np.ndarray) -> np.ndarray:
    """(n, 1) float values as (n, 2) little-endian float16 bytes"""
    return np.ascontiguousarray(x.reshape(-1, 1).astype("<f2")).view(np.uint8)


def pack_k_scales(ls: np.ndarray, lm: np.ndarray) -> np.ndarray:
    """
    Pack eight 6-bit scales and eight 6-bit mins into 12 bytes (Q4_K, Q5_K).

    Sub-blocks 0-3 keep their scale/min in the low 6 bits of bytes 0-7;
    sub-blocks 4-7 split theirs between the low/high nibbles of bytes 8-11
    and the top two bits of bytes 0-7.
    """
    ls = ls.astype(np.uint8)
    lm = lm.astype(np.uint8)
    packed = np.empty((ls.shape[0], 12), dtype=np.uint8)
    packed[:, 0:4] = ls[:, 0:4] | ((ls[:, 4:8] >> 4) << 6)
    packed[:, 4:8] = lm[:, 0:4] | ((lm[:, 4:8] >> 4) << 6)
    packed[:, 8:12] = (ls[:, 4:8] & 0xF) | ((lm[:, 4:8] & 0xF) << 4)
    return packed
