"""
Quantization policy - decides which codec each tensor is written with

The decision only looks at a tensor's name, shape, the requested codec and
the mode. It never touches tensor data, so it can be evaluated in the parent
process or inside a worker with the same result.

Modes:
    llama    - llama.cpp compatible: only 2D ``*.weight`` tensors are
               quantized, ``output.weight`` always gets Q6_K and everything
               else passes through with its stored type
    baseline - every 2D tensor gets the requested codec

In both modes a tensor whose last dimension is not a multiple of the chosen
codec's block size falls back to F32.
"""

from enum import Enum
from typing import NamedTuple, Optional, Sequence

from .codecs import Codec


class QuantizationMode(Enum):
    """Decision strategies"""

    LLAMA = "llama"
    BASELINE = "baseline"

    @classmethod
    def parse(cls, name) -> "QuantizationMode":
        if isinstance(name, QuantizationMode):
            return name
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown quantization mode: {name}. "
                f"Supported: {[m.value for m in cls]}"
            ) from None


class DecisionKind(Enum):
    QUANTIZE = "quantize"
    PASSTHROUGH = "passthrough"
    FALLBACK = "fallback"


class Decision(NamedTuple):
    """The codec chosen for a tensor and why"""

    codec: Codec
    kind: DecisionKind
    # codec the mode wanted before the block-size fallback kicked in
    wanted: Optional[Codec] = None


class BaselineStrategy:
    """Requested codec for every rank-2 tensor"""

    def select(self, name: str, shape: Sequence[int], requested: Codec) -> Optional[Codec]:
        return requested if len(shape) == 2 else None

    def passthrough(self, source: Optional[Codec]) -> Codec:
        return Codec.F32


class LlamaStrategy:
    """
    llama.cpp rules.

    Only 2D tensors named ``*.weight`` are quantized. The final projection
    (``output.weight``) always gets Q6_K. Ineligible tensors keep their
    stored codec.
    """

    OUTPUT_TENSOR = "output.weight"
    OUTPUT_CODEC = Codec.Q6K

    def select(self, name: str, shape: Sequence[int], requested: Codec) -> Optional[Codec]:
        if len(shape) != 2 or not name.endswith(".weight"):
            return None
        if name == self.OUTPUT_TENSOR:
            return self.OUTPUT_CODEC
        return requested

    def passthrough(self, source: Optional[Codec]) -> Codec:
        return source if source is not None else Codec.F32


STRATEGIES = {
    QuantizationMode.LLAMA: LlamaStrategy(),
    QuantizationMode.BASELINE: BaselineStrategy(),
}


def _fits(codec: Codec, shape: Sequence[int]) -> bool:
    if codec.block_size == 1:
        return True
    return len(shape) > 0 and shape[-1] % codec.block_size == 0


def plan(
    name: str,
    shape: Sequence[int],
    requested: Codec,
    mode: QuantizationMode = QuantizationMode.LLAMA,
    source: Optional[Codec] = Codec.F32,
) -> Decision:
    """
    Decide how a tensor is encoded.

    Args:
        name: Tensor name
        shape: Tensor shape, innermost dimension last
        requested: Codec asked for by the user
        mode: Decision strategy
        source: Codec the tensor is currently stored as (None if it is a
            type outside the supported codecs)

    Returns:
        Decision with the codec and whether it is a quantization, a
        pass-through of an ineligible tensor or a block-size fallback
    """
    strategy = STRATEGIES[QuantizationMode.parse(mode)]
    requested = Codec.parse(requested)

    chosen = strategy.select(name, shape, requested)
    if chosen is None:
        codec = strategy.passthrough(source)
        if not _fits(codec, shape):
            return Decision(Codec.F32, DecisionKind.FALLBACK, codec)
        return Decision(codec, DecisionKind.PASSTHROUGH)

    if not _fits(chosen, shape):
        return Decision(Codec.F32, DecisionKind.FALLBACK, chosen)
    return Decision(chosen, DecisionKind.QUANTIZE)


def decide(
    name: str,
    shape: Sequence[int],
    requested: Codec,
    mode: QuantizationMode = QuantizationMode.LLAMA,
    source: Optional[Codec] = Codec.F32,
) -> Codec:
    """The codec a tensor is written with (see plan())"""
    return plan(name, shape, requested, mode, source).codec
