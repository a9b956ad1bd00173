"""
Tests for the parallel quantizer
"""

from collections import OrderedDict

import pytest
import numpy as np

from gguf_quantize.errors import CodecError, TensorReadError
from gguf_quantize.quantization import Codec, QuantizationMode
from gguf_quantize.quantization import quantizer
from gguf_quantize.quantization.quantizer import quantize_tensor, quantize_tensors
from gguf_quantize.reader import read_container
from gguf_quantize.tensors import SourceTensor


def _tensor_set(arrays):
    return OrderedDict((name, SourceTensor.from_array(name, a)) for name, a in arrays.items())


@pytest.fixture
def tensor_set(llama_tensors):
    """
    Fixture providing the llama tensor set as SourceTensors
    """
    return _tensor_set(llama_tensors)


def test_every_tensor_is_quantized_once(tensor_set):
    """
    Test that the result has exactly the input names, in input order
    """
    result = quantize_tensors(tensor_set, Codec.Q4K, num_workers=1, progress=False)

    assert list(result) == list(tensor_set)
    for name, quantized in result.items():
        assert quantized.codec is not None
        assert quantized.nbytes == quantized.expected_nbytes()


def test_llama_codecs(tensor_set):
    """
    Test the codec chosen for each tensor of a llama-style set
    """
    result = quantize_tensors(tensor_set, Codec.Q4K, QuantizationMode.LLAMA, num_workers=1, progress=False)

    assert result["token_embd.weight"].codec is Codec.Q4K
    assert result["blk.0.attn_q.weight"].codec is Codec.Q4K
    assert result["output.weight"].codec is Codec.Q6K
    assert result["blk.0.attn_norm.weight"].codec is Codec.F32
    assert result["blk.0.ffn_up.weight"].codec is Codec.F32


def test_baseline_codecs(tensor_set):
    """
    Test that baseline mode applies the requested codec to every fitting 2D tensor
    """
    result = quantize_tensors(tensor_set, Codec.Q8_0, QuantizationMode.BASELINE, num_workers=1, progress=False)

    assert result["output.weight"].codec is Codec.Q8_0
    assert result["blk.0.attn_norm.weight"].codec is Codec.F32
    assert result["blk.0.ffn_up.weight"].codec is Codec.F32


def test_f16_passthrough_keeps_stored_bytes():
    """
    Test that a pass-through with an unchanged codec copies the data as stored
    """
    norm = np.linspace(-1, 1, 64).astype(np.float16)
    tensor = SourceTensor.from_array("blk.0.attn_norm.weight", norm)

    quantized, _ = quantize_tensor(tensor, Codec.Q4K, QuantizationMode.LLAMA)

    assert quantized.codec is Codec.F16
    assert quantized.packed_bytes == norm.tobytes()


def test_container_passthrough_keeps_quantized_bytes(make_gguf, rng):
    """
    Test that an already quantized ineligible tensor from a GGUF file is copied
    """
    from gguf.quants import quantize as gguf_quantize
    import gguf

    packed = gguf_quantize(rng.standard_normal((2, 64)).astype(np.float32), gguf.GGMLQuantizationType.Q8_0)

    def add_quantized(writer):
        writer.add_tensor("blk.0.scale", packed, raw_dtype=gguf.GGMLQuantizationType.Q8_0)

    path = make_gguf("q8.gguf", {}, extra_metadata=add_quantized)
    _, tensors = read_container(path)

    quantized, _ = quantize_tensor(tensors["blk.0.scale"], Codec.Q4K, QuantizationMode.LLAMA)
    assert quantized.codec is Codec.Q8_0
    assert quantized.packed_bytes == packed.tobytes()


def test_scalar_tensor_written_as_one_element():
    """
    Test that rank-0 tensors get shape (1,)
    """
    tensor = SourceTensor.from_array("scale", np.float32(2.0))
    quantized, _ = quantize_tensor(tensor, Codec.Q4K)

    assert quantized.shape == (1,)
    assert quantized.codec is Codec.F32
    assert quantized.nbytes == 4


def test_progress_lines(tensor_set, capsys):
    """
    Test that one progress line is printed per tensor, noting fallbacks
    """
    quantize_tensors(tensor_set, Codec.Q4K, num_workers=1)
    out = capsys.readouterr().out.splitlines()

    assert len(out) == len(tensor_set)
    assert out[0].startswith(f"[1/{len(tensor_set)}] token_embd.weight: q4k")
    fallback = [line for line in out if "blk.0.ffn_up.weight" in line][0]
    assert "does not fit q4k" in fallback


def test_fail_fast_serial(tensor_set, monkeypatch):
    """
    Test that the first failure stops the run and names the tensor
    """
    seen = []
    real = quantizer.quantize_tensor

    def failing(tensor, requested, mode):
        seen.append(tensor.name)
        if tensor.name == "blk.0.attn_q.weight":
            raise CodecError("boom", tensor.name)
        return real(tensor, requested, mode)

    monkeypatch.setattr(quantizer, "quantize_tensor", failing)

    with pytest.raises(CodecError) as exc_info:
        quantize_tensors(tensor_set, Codec.Q4K, num_workers=1, progress=False)

    assert exc_info.value.tensor_name == "blk.0.attn_q.weight"
    assert exc_info.value.stage == "quantize"
    assert seen == ["token_embd.weight", "blk.0.attn_norm.weight", "blk.0.attn_q.weight"]


def test_encoder_failure_becomes_codec_error(tensor_set, monkeypatch):
    """
    Test that unexpected encoder errors are reported as CodecError for the tensor
    """
    def broken_encode(codec, data):
        raise RuntimeError("kernel exploded")

    monkeypatch.setattr(quantizer, "encode", broken_encode)

    with pytest.raises(CodecError, match="kernel exploded") as exc_info:
        quantize_tensors(tensor_set, Codec.Q4K, num_workers=1, progress=False)
    assert exc_info.value.tensor_name == "token_embd.weight"


def test_read_failure_becomes_tensor_read_error(tmp_path):
    """
    Test that a tensor whose bytes are missing fails with TensorReadError
    """
    import gguf

    path = tmp_path / "short.gguf"
    path.write_bytes(b"\x00" * 16)
    tensors = OrderedDict(w=SourceTensor(
        name="w", shape=(2, 32), ggml_type=gguf.GGMLQuantizationType.F32,
        path=path, offset=0, n_bytes=256,
    ))

    with pytest.raises(TensorReadError) as exc_info:
        quantize_tensors(tensors, Codec.Q8_0, num_workers=1, progress=False)
    assert exc_info.value.stage == "read"


@pytest.mark.slow
def test_parallel_matches_serial(tensor_set):
    """
    Test that the process pool produces the same bytes as the serial path
    """
    serial = quantize_tensors(tensor_set, Codec.Q5K, num_workers=1, progress=False)
    parallel = quantize_tensors(tensor_set, Codec.Q5K, num_workers=3, progress=False)

    assert list(parallel) == list(serial)
    for name in serial:
        assert parallel[name].codec is serial[name].codec
        assert parallel[name].packed_bytes == serial[name].packed_bytes


@pytest.mark.slow
def test_parallel_failure_raises(rng, tmp_path):
    """
    Test that a worker failure surfaces in the parent with the tensor name
    """
    import gguf

    tensors = _tensor_set({f"blk.{i}.w.weight": rng.standard_normal((2, 256)).astype(np.float32)
                           for i in range(4)})
    tensors["broken"] = SourceTensor(
        name="broken", shape=(2, 32), ggml_type=gguf.GGMLQuantizationType.F32,
        path=tmp_path / "gone.gguf", offset=0, n_bytes=256,
    )

    with pytest.raises(TensorReadError) as exc_info:
        quantize_tensors(tensors, Codec.Q4K, num_workers=2, progress=False)
    assert exc_info.value.tensor_name == "broken"
