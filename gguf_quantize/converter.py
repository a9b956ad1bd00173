"""
Conversion entry point - ties reading, quantizing and writing together
"""

import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from colorama import init as colorama_init, Style

from .errors import UsageError
from .formats import Format
from .quantization.codecs import Codec
from .quantization.policy import QuantizationMode
from .quantization.quantizer import quantize_tensors
from .reader import load_flat_tensors, load_tensors
from .theme import THEME as theme
from .writer import ContainerWriter, check_output_path

# Initialize colorama for cross-platform color support
colorama_init(autoreset=True)


PathLike = Union[str, Path]


def _parse_format(fmt) -> Optional[Format]:
    if fmt is None or isinstance(fmt, Format):
        return fmt
    try:
        return Format(str(fmt).lower())
    except ValueError:
        raise UsageError(
            f"Unknown source format: {fmt}. Supported: {[f.value for f in Format]}"
        ) from None


def run_quantize(
    in_files: Sequence[PathLike],
    out_file: PathLike,
    quantization: Union[str, Codec],
    mode: Optional[Union[str, QuantizationMode]] = None,
    num_workers: Optional[int] = None,
    source_format: Optional[Union[str, Format]] = None,
    verbose: bool = False,
    progress: bool = True,
) -> Path:
    """
    Quantize one model into a GGUF file.

    Several safetensors files are merged into one tensor set (later files
    win on name collisions). Every other format takes exactly one input.
    GGUF inputs keep their metadata; the other formats have none.

    Args:
        in_files: Input model files
        out_file: Output GGUF path
        quantization: Requested codec (e.g. "q4k", "Q8_0")
        mode: Quantization mode ("llama" or "baseline"; None = llama for
            GGUF input, baseline for formats without metadata)
        num_workers: Worker processes (None = CPU cores - 1)
        source_format: Declared input format (None = infer from extension)
        verbose: Print extra detail
        progress: Print one line per tensor

    Returns:
        Path of the written file

    Raises:
        UsageError: If the arguments are invalid
        FormatError: If an input cannot be read
        CodecError: If a tensor fails to quantize
    """
    in_files = [Path(p) for p in in_files]
    if not in_files:
        raise UsageError("No input files given")
    out_file = check_output_path(out_file)

    try:
        codec = Codec.parse(quantization)
        mode = QuantizationMode.parse(mode) if mode is not None else None
    except ValueError as e:
        raise UsageError(str(e)) from None
    fmt = _parse_format(source_format)

    first_format = fmt or Format.infer(in_files[0])
    flat = first_format is Format.SAFETENSORS
    if not flat:
        if len(in_files) != 1:
            raise UsageError(
                "Only one input file is supported unless the inputs are safetensors, "
                f"got {len(in_files)}"
            )
        if first_format is None:
            raise UsageError(
                f"Cannot infer the format of {in_files[0].name}; pass the source format explicitly"
            )

    if mode is None:
        mode = QuantizationMode.LLAMA if first_format.has_metadata else QuantizationMode.BASELINE

    start_time = time.time()
    print(f"{theme['info']}Quantizing {', '.join(p.name for p in in_files)} to {codec.value} "
          f"({mode.value} mode)...{Style.RESET_ALL}", flush=True)

    # Open the output first so path problems show up before the slow part
    with ContainerWriter(out_file) as writer:
        if flat:
            metadata = {}
            tensors = load_flat_tensors(in_files, verbose=verbose)
        else:
            metadata, tensors = load_tensors(in_files[0], first_format, verbose=verbose)

        if verbose:
            print(f"{theme['metadata']}Metadata fields: {len(metadata)}{Style.RESET_ALL}", flush=True)
            print(f"{theme['metadata']}Tensors: {len(tensors)}{Style.RESET_ALL}", flush=True)

        quantized = quantize_tensors(tensors, codec, mode, num_workers=num_workers, progress=progress)

        if verbose:
            print(f"\n{theme['info']}Writing {out_file.name}...{Style.RESET_ALL}", flush=True)
        writer.write(metadata, quantized)

    print(f"\n{theme['success']}Quantization complete: {out_file}{Style.RESET_ALL}", flush=True)
    if verbose:
        elapsed = time.time() - start_time
        input_size = sum(p.stat().st_size for p in in_files) / (1024**2)
        output_size = out_file.stat().st_size / (1024**2)
        ratio = input_size / output_size if output_size else 0.0
        print(f"{theme['metadata']}Time taken: {elapsed:.2f}s{Style.RESET_ALL}", flush=True)
        print(f"{theme['metadata']}Size: {input_size:.2f} MB -> {output_size:.2f} MB "
              f"({ratio:.2f}x compression){Style.RESET_ALL}", flush=True)

    return out_file


def list_tensors(
    path: PathLike, source_format: Optional[Union[str, Format]] = None
) -> List[Tuple[str, Tuple[int, ...], str]]:
    """
    List the tensors of a model file without quantizing it.

    Returns:
        (name, shape, type name) for each tensor in file order
    """
    _, tensors = load_tensors(Path(path), _parse_format(source_format))
    return [(t.name, t.shape, t.ggml_type.name) for t in tensors.values()]
