"""
In-memory tensor and metadata types passed between reader, quantizer and writer
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np
import gguf
from gguf.quants import quant_shape_to_byte_shape

from .errors import TensorReadError
from .quantization.codecs import Codec, decode


T = gguf.GGMLQuantizationType

# ggml types stored as plain numpy arrays rather than packed blocks
NUMPY_TYPES = {
    T.F32: np.float32,
    T.F16: np.float16,
    T.F64: np.float64,
    T.I8: np.int8,
    T.I16: np.int16,
    T.I32: np.int32,
    T.I64: np.int64,
}


@dataclass(frozen=True, eq=False)
class SourceTensor:
    """
    A named tensor from a source file. Immutable once read.

    ``shape`` is in numpy (row-major) order, so ``shape[-1]`` is the innermost
    dimension. Tensors from flat formats carry their ``array``; tensors from a
    GGUF container carry a locator (``path``, ``offset``, ``n_bytes``) and are
    read on demand.
    """

    name: str
    shape: Tuple[int, ...]
    ggml_type: gguf.GGMLQuantizationType
    array: Optional[np.ndarray] = field(default=None, repr=False)
    path: Optional[Path] = None
    offset: int = 0
    n_bytes: int = 0

    @classmethod
    def from_array(cls, name: str, array: np.ndarray) -> "SourceTensor":
        """Wrap a float array; float16 stays float16, everything else becomes float32"""
        array = np.asarray(array)
        if array.dtype != np.float16:
            array = array.astype(np.float32, copy=False)
        ggml_type = T.F16 if array.dtype == np.float16 else T.F32
        return cls(name=name, shape=tuple(int(d) for d in array.shape),
                   ggml_type=ggml_type, array=array)

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def codec(self) -> Optional[Codec]:
        """The stored element type as a codec, or None if it is not one of the fourteen"""
        return Codec.from_ggml_type(self.ggml_type)

    def raw(self) -> np.ndarray:
        """
        The stored representation: a numpy array for plain types, otherwise
        uint8 bytes shaped (rows..., bytes per row).
        """
        if self.array is not None:
            return self.array

        with open(self.path, "rb") as f:
            f.seek(self.offset)
            buf = f.read(self.n_bytes)
        if len(buf) != self.n_bytes:
            raise TensorReadError(
                f"Tensor {self.name} is truncated: expected {self.n_bytes} bytes, got {len(buf)}",
                tensor_name=self.name,
            )

        dtype = NUMPY_TYPES.get(self.ggml_type)
        if dtype is not None:
            return np.frombuffer(buf, dtype=np.dtype(dtype).newbyteorder("<")).reshape(self.shape)
        byte_shape = quant_shape_to_byte_shape(self.shape, self.ggml_type) if self.shape else (self.n_bytes,)
        return np.frombuffer(buf, dtype=np.uint8).reshape(byte_shape)

    def to_float(self) -> np.ndarray:
        """Dequantize to a float32 array of ``shape``"""
        data = self.raw()
        if self.ggml_type in NUMPY_TYPES:
            return data.astype(np.float32)
        return decode(self.ggml_type, data).reshape(self.shape)


@dataclass(frozen=True, eq=False)
class QuantizedTensor:
    """
    The encoded form of one source tensor, ready to be written.

    ``data`` is float32/float16 for the float codecs and byte-shaped uint8 for
    block codecs.
    """

    codec: Codec
    shape: Tuple[int, ...]
    data: np.ndarray = field(repr=False)

    @property
    def block_size(self) -> int:
        return self.codec.block_size

    @property
    def ggml_type(self) -> gguf.GGMLQuantizationType:
        return self.codec.ggml_type

    @property
    def nbytes(self) -> int:
        return int(self.data.nbytes)

    @property
    def packed_bytes(self) -> bytes:
        return np.ascontiguousarray(self.data).tobytes()

    def expected_nbytes(self) -> int:
        """Size the data must have for ``shape`` under this codec"""
        n_elements = int(np.prod(self.shape, dtype=np.int64)) if self.shape else 1
        return n_elements // self.codec.block_size * self.codec.type_size


@dataclass(frozen=True)
class MetadataValue:
    """
    A typed metadata value. ``sub_type`` is the element type of arrays.
    """

    type: gguf.GGUFValueType
    value: Any
    sub_type: Optional[gguf.GGUFValueType] = None


Metadata = Dict[str, MetadataValue]
