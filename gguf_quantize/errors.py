"""
Error types raised by the conversion pipeline

Every error aborts the whole run. ``stage`` names the pipeline step that
failed so the CLI can report where things went wrong.
"""

from typing import Optional


class ConversionError(Exception):
    """Base class for all conversion failures"""

    stage = "convert"


class UsageError(ConversionError):
    """Invalid arguments: empty input list, wrong input count, bad output path"""

    stage = "validate"


class FormatError(ConversionError):
    """Malformed, unrecognized or unsupported file contents"""

    stage = "read"


class TensorError(ConversionError):
    """A failure tied to one specific tensor"""

    def __init__(self, message: str, tensor_name: Optional[str] = None):
        super().__init__(message)
        self.tensor_name = tensor_name

    def __reduce__(self):
        return (type(self), (self.args[0], self.tensor_name))


class CodecError(TensorError):
    """The encoder (or the policy) failed for a tensor"""

    stage = "quantize"


class TensorReadError(TensorError):
    """The bytes of a tensor could not be read from its source file"""

    stage = "read"
