"""
Codecs, block kernels and the per-tensor quantization policy
"""

from .codecs import Codec, CodecSpec, CODECS, encode, decode
from .policy import QuantizationMode, Decision, DecisionKind, plan, decide

__all__ = ["Codec", "CodecSpec", "CODECS", "encode", "decode",
           "QuantizationMode", "Decision", "DecisionKind", "plan", "decide"]
