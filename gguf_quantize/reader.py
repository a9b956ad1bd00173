"""
Format reader - loads named tensors (and metadata) from model files
"""

from collections import OrderedDict
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np
import gguf

from .errors import FormatError
from .formats import Format
from .tensors import Metadata, MetadataValue, SourceTensor


def _require_torch():
    try:
        import torch
    except ImportError:
        raise ImportError(
            "PyTorch is required to read safetensors and .pth files. "
            "Install it with: pip install torch"
        )
    return torch


def _from_torch(name: str, tensor) -> SourceTensor:
    torch = _require_torch()
    tensor = tensor.detach().cpu()
    if tensor.dtype != torch.float16:
        tensor = tensor.to(torch.float32)
    return SourceTensor.from_array(name, tensor.numpy())


def _load_safetensors(path: Path) -> Dict[str, SourceTensor]:
    _require_torch()
    from safetensors import SafetensorError
    from safetensors.torch import load_file

    try:
        state = load_file(str(path))
    except SafetensorError as e:
        raise FormatError(f"Invalid safetensors file {path}: {e}") from e
    return OrderedDict((name, _from_torch(name, t)) for name, t in state.items())


def load_flat_tensors(paths: Iterable[Union[str, Path]], verbose: bool = False) -> Dict[str, SourceTensor]:
    """
    Load and merge one or more safetensors files.

    Files are merged in the order given. A tensor name that appears in more
    than one file takes the value from the last file.

    Raises:
        OSError: If a file cannot be opened
        FormatError: If a file is not valid safetensors
    """
    merged: Dict[str, SourceTensor] = OrderedDict()
    for path in paths:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        tensors = _load_safetensors(path)
        if verbose:
            print(f"Loaded {len(tensors)} tensors from {path.name}", flush=True)
        merged.update(tensors)
    return merged


def _load_npz(path: Path) -> Dict[str, SourceTensor]:
    try:
        with np.load(path, allow_pickle=False) as archive:
            return OrderedDict(
                (name, SourceTensor.from_array(name, archive[name])) for name in archive.files
            )
    except ValueError as e:
        raise FormatError(f"Invalid npz archive {path}: {e}") from e


def _load_checkpoint(path: Path) -> Dict[str, SourceTensor]:
    torch = _require_torch()
    try:
        state = torch.load(str(path), map_location="cpu", weights_only=True)
    except (RuntimeError, EOFError) as e:
        raise FormatError(f"Could not load checkpoint {path}: {e}") from e

    # Training checkpoints nest the weights
    for key in ("state_dict", "model"):
        if isinstance(state, dict) and isinstance(state.get(key), dict):
            state = state[key]
    if not isinstance(state, dict):
        raise FormatError(f"Checkpoint {path} does not contain a tensor dictionary")

    return OrderedDict(
        (name, _from_torch(name, t)) for name, t in state.items() if isinstance(t, torch.Tensor)
    )


def _field_value(field) -> MetadataValue:
    """Convert a GGUFReader field to a typed value"""
    value_type = gguf.GGUFValueType(field.types[0])

    if value_type == gguf.GGUFValueType.ARRAY:
        if len(field.types) < 2:
            # Empty arrays carry no element type
            return MetadataValue(value_type, [], gguf.GGUFValueType.UINT32)
        sub_type = gguf.GGUFValueType(field.types[1])
        if sub_type == gguf.GGUFValueType.ARRAY:
            raise FormatError(f"Nested array metadata is not supported: {field.name}")
        if sub_type == gguf.GGUFValueType.STRING:
            values = [bytes(field.parts[idx]).decode("utf-8") for idx in field.data]
        else:
            values = [field.parts[idx][0].item() for idx in field.data]
        return MetadataValue(value_type, values, sub_type)

    part = field.parts[field.data[0]]
    if value_type == gguf.GGUFValueType.STRING:
        return MetadataValue(value_type, bytes(part).decode("utf-8"))
    return MetadataValue(value_type, part[0].item())


def read_container(path: Union[str, Path]) -> Tuple[Metadata, Dict[str, SourceTensor]]:
    """
    Read a GGUF file's metadata and tensor directory.

    Tensor bytes are not loaded; each SourceTensor records where its data
    lives in the file.

    Raises:
        OSError: If the file cannot be opened
        FormatError: If the file is not a valid GGUF container
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    try:
        reader = gguf.GGUFReader(path)
    except (ValueError, KeyError, IndexError) as e:
        raise FormatError(f"Invalid GGUF file {path}: {e}") from e

    metadata: Metadata = OrderedDict()
    for key, field in reader.fields.items():
        # Header counters exposed by GGUFReader, not real metadata
        if key.startswith("GGUF."):
            continue
        metadata[key] = _field_value(field)

    tensors: Dict[str, SourceTensor] = OrderedDict()
    for tensor in reader.tensors:
        # GGUF stores dimensions innermost first
        shape = tuple(int(d) for d in reversed(tensor.shape.tolist()))
        tensors[tensor.name] = SourceTensor(
            name=tensor.name,
            shape=shape,
            ggml_type=gguf.GGMLQuantizationType(tensor.tensor_type),
            path=path,
            offset=int(tensor.data_offset),
            n_bytes=int(tensor.n_bytes),
        )
    return metadata, tensors


def load_tensors(
    path: Union[str, Path], fmt: Optional[Format] = None, verbose: bool = False
) -> Tuple[Metadata, Dict[str, SourceTensor]]:
    """
    Load a single model file.

    Args:
        path: File to read
        fmt: Declared format (None = infer from the extension)

    Returns:
        (metadata, tensors); metadata is empty for formats without it

    Raises:
        FormatError: If the format is unknown or cannot be converted
    """
    path = Path(path)
    fmt = fmt or Format.infer(path)
    if fmt is None:
        raise FormatError(f"Cannot infer the format of {path}; declare it explicitly")

    if fmt is Format.GGUF:
        return read_container(path)
    if fmt is Format.GGML:
        raise FormatError(
            f"{path.name} is a legacy GGML container, which cannot be converted. "
            "Convert it to GGUF with llama.cpp first"
        )

    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    if fmt is Format.SAFETENSORS:
        tensors = load_flat_tensors([path], verbose=verbose)
    elif fmt is Format.NPZ:
        tensors = _load_npz(path)
    else:
        tensors = _load_checkpoint(path)
    return OrderedDict(), tensors
