"""
Parallel quantizer - encodes a whole tensor set with a process pool
"""

import multiprocessing as mp
from functools import partial
from typing import Dict, Mapping, Optional, Tuple

from colorama import Style

from ..errors import CodecError, FormatError, TensorError, TensorReadError
from ..tensors import QuantizedTensor, SourceTensor
from ..theme import THEME as theme
from .codecs import Codec, encode
from .policy import Decision, DecisionKind, QuantizationMode, plan


def quantize_tensor(
    tensor: SourceTensor,
    requested: Codec,
    mode: QuantizationMode = QuantizationMode.LLAMA,
) -> Tuple[QuantizedTensor, Decision]:
    """
    Encode a single tensor with the codec the policy picks for it.

    A pass-through that keeps the stored codec copies the stored bytes;
    everything else is encoded from the dequantized float32 data.

    Raises:
        TensorReadError: If the tensor's bytes cannot be read
        CodecError: If the encoder fails
    """
    decision = plan(tensor.name, tensor.shape, requested, mode, tensor.codec)
    codec = decision.codec
    keep_stored = decision.kind is DecisionKind.PASSTHROUGH and codec is tensor.codec

    try:
        data = tensor.raw() if keep_stored else tensor.to_float()
    except TensorError:
        raise
    except (OSError, FormatError, ValueError) as e:
        raise TensorReadError(f"Could not read tensor {tensor.name}: {e}", tensor.name) from e

    if not keep_stored:
        try:
            data = encode(codec, data)
        except Exception as e:
            raise CodecError(
                f"Failed to encode tensor {tensor.name} as {codec.value}: {e}", tensor.name
            ) from e

    shape = tensor.shape if tensor.shape else (1,)
    return QuantizedTensor(codec=codec, shape=shape, data=data), decision


def _quantize_tensor_worker(args, requested, mode):
    """
    Worker function for parallel tensor quantization.
    Must be at module level for pickle serialization.

    Errors are returned rather than raised so the parent can name the
    failing tensor.
    """
    idx, tensor = args
    try:
        quantized, decision = quantize_tensor(tensor, requested, mode)
    except TensorError as e:
        return {"idx": idx, "name": tensor.name, "error": e}
    except Exception as e:
        error = CodecError(f"Failed to quantize tensor {tensor.name}: {e}", tensor.name)
        return {"idx": idx, "name": tensor.name, "error": error}
    return {
        "idx": idx,
        "name": tensor.name,
        "tensor": quantized,
        "decision": decision,
        "error": None,
    }


def _status(result) -> str:
    quantized = result["tensor"]
    decision = result["decision"]
    if decision.kind is DecisionKind.FALLBACK:
        return (f"{theme['warning']}{quantized.codec.value} "
                f"(shape {list(quantized.shape)} does not fit {decision.wanted.value}){Style.RESET_ALL}")
    if decision.kind is DecisionKind.PASSTHROUGH:
        return f"{quantized.codec.value} (kept)"
    return quantized.codec.value


def quantize_tensors(
    tensors: Mapping[str, SourceTensor],
    requested: Codec,
    mode: QuantizationMode = QuantizationMode.LLAMA,
    num_workers: Optional[int] = None,
    progress: bool = True,
) -> Dict[str, QuantizedTensor]:
    """
    Quantize every tensor of a set.

    Tensors are encoded independently, in a process pool when there is more
    than one worker. The first failure terminates the pool and is raised;
    nothing is returned for a partially quantized set.

    Args:
        tensors: Source tensors keyed by name
        requested: Requested codec
        mode: Quantization mode
        num_workers: Worker processes (None = CPU cores - 1, 1 = serial)
        progress: Print one progress line per finished tensor

    Returns:
        Quantized tensors keyed by name, in input order

    Raises:
        CodecError: If a tensor fails to encode
        TensorReadError: If a tensor fails to read
    """
    requested = Codec.parse(requested)
    mode = QuantizationMode.parse(mode)
    items = list(enumerate(tensors.values()))
    total = len(items)

    if num_workers is None:
        num_workers = max(1, mp.cpu_count() - 1)
    num_workers = max(1, min(num_workers, total))

    worker_func = partial(_quantize_tensor_worker, requested=requested, mode=mode)
    results = [None] * total

    def collect(done, result):
        if result["error"] is not None:
            raise result["error"]
        results[result["idx"]] = result["tensor"]
        if progress:
            print(f"[{done}/{total}] {result['name']}: {_status(result)}", flush=True)

    if num_workers == 1:
        for done, args in enumerate(items, start=1):
            collect(done, worker_func(args))
    else:
        # Leaving the with-block terminates the pool, also when collect() raises
        with mp.Pool(processes=num_workers) as pool:
            for done, result in enumerate(pool.imap_unordered(worker_func, items), start=1):
                collect(done, result)

    return {tensor.name: results[idx] for idx, tensor in items}
