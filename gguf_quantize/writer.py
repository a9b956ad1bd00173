"""
Container writer - serializes metadata and quantized tensors as GGUF v3

The file is written to a temporary path next to the destination and only
renamed into place by commit(), so a failed run never leaves a partial
output behind and never clobbers an existing file.

Layout:
    magic 'GGUF' | u32 version | u64 n_tensors | u64 n_kv
    n_kv x (string key | u32 value type | value)
    n_tensors x (string name | u32 n_dims | n_dims x u64 dim | u32 type | u64 offset)
    padding to alignment
    tensor data, each tensor padded to alignment

Strings are a u64 byte length followed by UTF-8 bytes. Dimensions are
written innermost first; offsets are relative to the start of tensor data.
"""

import os
import stat
import struct
import tempfile
from pathlib import Path
from typing import BinaryIO, Mapping, Optional, Union

import gguf

from .errors import FormatError, UsageError
from .formats import is_flat_tensor_path
from .tensors import Metadata, MetadataValue, QuantizedTensor


VT = gguf.GGUFValueType

# struct codes for fixed size value types
_SCALAR_FORMATS = {
    VT.UINT8: "<B",
    VT.INT8: "<b",
    VT.UINT16: "<H",
    VT.INT16: "<h",
    VT.UINT32: "<I",
    VT.INT32: "<i",
    VT.FLOAT32: "<f",
    VT.BOOL: "<?",
    VT.UINT64: "<Q",
    VT.INT64: "<q",
    VT.FLOAT64: "<d",
}

ALIGNMENT_KEY = "general.alignment"


def check_output_path(path: Union[str, Path]) -> Path:
    """
    Validate an output path before anything is read or written.

    Raises:
        UsageError: If the path names a flat tensor file (.safetensors)
    """
    path = Path(path)
    if is_flat_tensor_path(path):
        raise UsageError(
            f"Output file {path.name} has a safetensors extension; "
            "quantized output is always written as GGUF"
        )
    return path


def _pack_string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack("<Q", len(encoded)) + encoded


def _pack_scalar(value_type, value, key: str) -> bytes:
    if value_type == VT.STRING:
        return _pack_string(str(value))
    fmt = _SCALAR_FORMATS.get(value_type)
    if fmt is None:
        raise FormatError(f"Unsupported metadata type {value_type!r} for {key}")
    try:
        return struct.pack(fmt, value)
    except struct.error as e:
        raise FormatError(f"Metadata value for {key} does not fit {value_type.name}: {e}") from e


def _pack_value(key: str, item: MetadataValue) -> bytes:
    value_type = VT(item.type)
    out = struct.pack("<I", int(value_type))
    if value_type != VT.ARRAY:
        return out + _pack_scalar(value_type, item.value, key)

    sub_type = VT(item.sub_type if item.sub_type is not None else VT.UINT32)
    if sub_type == VT.ARRAY:
        raise FormatError(f"Nested array metadata is not supported: {key}")
    values = list(item.value)
    out += struct.pack("<IQ", int(sub_type), len(values))
    return out + b"".join(_pack_scalar(sub_type, v, key) for v in values)


def _padding(position: int, alignment: int) -> int:
    return (alignment - position % alignment) % alignment


def alignment_of(metadata: Metadata) -> int:
    """Data alignment requested by the metadata, or the GGUF default"""
    item = metadata.get(ALIGNMENT_KEY)
    if item is None:
        return gguf.GGUF_DEFAULT_ALIGNMENT
    alignment = item.value
    if not isinstance(alignment, int) or alignment <= 0 or alignment % 8 != 0:
        raise FormatError(f"Invalid {ALIGNMENT_KEY}: {alignment!r}")
    return alignment


def _output_mode(path: Path) -> int:
    """Permission bits for a new output: the existing file's, else 0o666 minus the umask"""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


class ContainerWriter:
    """
    Writes one GGUF file via a temporary file.

    Usage:
        with ContainerWriter(out_path) as writer:
            writer.write(metadata, tensors)

    Leaving the block normally commits the file once write() has been
    called; leaving it with an exception removes the temporary file.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = check_output_path(path)
        self.temp_path: Optional[Path] = None
        self._file: Optional[BinaryIO] = None
        self._written = False

    def open(self) -> "ContainerWriter":
        """
        Create the temporary file next to the destination.

        Raises:
            OSError: If the destination directory is missing or not writable
        """
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        self.temp_path = Path(temp_name)
        self._file = os.fdopen(fd, "wb")
        return self

    def write(self, metadata: Metadata, tensors: Mapping[str, QuantizedTensor]) -> None:
        """Serialize metadata and tensors (in mapping order) to the temporary file"""
        if self._file is None:
            raise RuntimeError("ContainerWriter.write() called before open()")

        alignment = alignment_of(metadata)
        f = self._file

        f.write(struct.pack("<IIQQ", gguf.GGUF_MAGIC, gguf.GGUF_VERSION, len(tensors), len(metadata)))

        for key, item in metadata.items():
            f.write(_pack_string(key))
            f.write(_pack_value(key, item))

        offset = 0
        for name, tensor in tensors.items():
            expected = tensor.expected_nbytes()
            if tensor.nbytes != expected:
                raise FormatError(
                    f"Tensor {name} holds {tensor.nbytes} bytes, "
                    f"expected {expected} for {tensor.codec.value} {list(tensor.shape)}"
                )
            dims = tuple(reversed(tensor.shape))
            f.write(_pack_string(name))
            f.write(struct.pack(f"<I{len(dims)}Q", len(dims), *dims))
            f.write(struct.pack("<IQ", int(tensor.ggml_type), offset))
            offset += tensor.nbytes + _padding(tensor.nbytes, alignment)

        f.write(b"\x00" * _padding(f.tell(), alignment))

        for tensor in tensors.values():
            f.write(tensor.packed_bytes)
            f.write(b"\x00" * _padding(tensor.nbytes, alignment))

        self._written = True

    def commit(self) -> Path:
        """Move the finished file onto the destination path"""
        if not self._written:
            raise RuntimeError("ContainerWriter.commit() called before write()")
        self._file.close()
        # mkstemp creates the file 0o600
        os.chmod(self.temp_path, _output_mode(self.path))
        os.replace(self.temp_path, self.path)
        self.temp_path = None
        return self.path

    def abort(self) -> None:
        """Discard the temporary file; the destination is left untouched"""
        if self._file is not None and not self._file.closed:
            self._file.close()
        if self.temp_path is not None:
            self.temp_path.unlink(missing_ok=True)
            self.temp_path = None

    def __enter__(self) -> "ContainerWriter":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None and self._written:
            self.commit()
        else:
            self.abort()
        return False
