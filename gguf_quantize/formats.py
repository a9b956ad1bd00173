"""
Source formats understood by the reader and how they are inferred from paths
"""

from enum import Enum
from pathlib import Path
from typing import Optional, Union


class Format(Enum):
    """Logical model file formats"""

    SAFETENSORS = "safetensors"
    NPZ = "npz"
    GGML = "ggml"
    GGUF = "gguf"
    PTH = "pth"
    PICKLE = "pickle"

    @classmethod
    def infer(cls, path: Union[str, Path]) -> Optional["Format"]:
        """
        Infer the format of a file from its extension.

        ``.bin`` is not inferred: both legacy ggml containers and pytorch
        checkpoints use it.

        Returns:
            The inferred Format, or None when the extension is unknown or ambiguous
        """
        suffix = Path(path).suffix.lower().lstrip(".")
        return _EXTENSIONS.get(suffix)

    @property
    def has_metadata(self) -> bool:
        """Whether files of this format carry model metadata next to tensors"""
        return self in (Format.GGUF, Format.GGML)


_EXTENSIONS = {
    "safetensors": Format.SAFETENSORS,
    "safetensor": Format.SAFETENSORS,
    "npz": Format.NPZ,
    "pth": Format.PTH,
    "pt": Format.PTH,
    "ggml": Format.GGML,
    "gguf": Format.GGUF,
}

# Extensions that only ever denote the flat tensor format
FLAT_TENSOR_EXTENSIONS = frozenset(
    ext for ext, fmt in _EXTENSIONS.items() if fmt is Format.SAFETENSORS
)


def is_flat_tensor_path(path: Union[str, Path]) -> bool:
    """True if the path's extension denotes a flat tensor (safetensors) file"""
    return Path(path).suffix.lower().lstrip(".") in FLAT_TENSOR_EXTENSIONS
