"""
gguf-quantize - quantize model weights into GGUF containers
"""

__version__ = "0.1.0"

from .converter import run_quantize, list_tensors
from .errors import ConversionError, UsageError, FormatError, TensorError, CodecError, TensorReadError
from .formats import Format
from .quantization import Codec, QuantizationMode

__all__ = ["run_quantize", "list_tensors", "ConversionError", "UsageError", "FormatError",
           "TensorError", "CodecError", "TensorReadError", "Format", "Codec", "QuantizationMode"]
