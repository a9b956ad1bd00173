"""
Shared pytest fixtures and configuration for all tests
"""

import pytest
import numpy as np
import gguf
from safetensors.numpy import save_file


@pytest.fixture
def rng():
    """
    Fixture providing a seeded random generator
    """
    return np.random.default_rng(1234)


@pytest.fixture
def make_safetensors(tmp_path):
    """
    Fixture returning a function that writes a safetensors file

    Usage: path = make_safetensors("model.safetensors", {"name": array})
    """
    def make(filename, tensors):
        path = tmp_path / filename
        save_file({name: np.ascontiguousarray(t) for name, t in tensors.items()}, str(path))
        return path
    return make


@pytest.fixture
def make_gguf(tmp_path):
    """
    Fixture returning a function that writes a GGUF file with gguf.GGUFWriter

    Usage: path = make_gguf("model.gguf", {"name": array}, extra_metadata=callable)
    """
    def make(filename, tensors, extra_metadata=None):
        path = tmp_path / filename
        writer = gguf.GGUFWriter(str(path), "llama")
        writer.add_uint32("llama.block_count", 1)
        writer.add_float32("llama.attention.layer_norm_rms_epsilon", 1e-5)
        writer.add_string("general.name", "tiny-test-model")
        writer.add_array("tokenizer.ggml.tokens", ["<s>", "</s>", "hello"])
        writer.add_array("tokenizer.ggml.scores", [0.0, -1.5, -2.25])
        writer.add_bool("tokenizer.ggml.add_bos_token", True)
        if extra_metadata is not None:
            extra_metadata(writer)
        for name, array in tensors.items():
            writer.add_tensor(name, np.ascontiguousarray(array))
        writer.write_header_to_file()
        writer.write_kv_data_to_file()
        writer.write_tensors_to_file()
        writer.close()
        return path
    return make


@pytest.fixture
def llama_tensors(rng):
    """
    Fixture providing a tiny llama-shaped tensor set (numpy order shapes)
    """
    return {
        "token_embd.weight": rng.standard_normal((8, 256)).astype(np.float32),
        "blk.0.attn_norm.weight": np.ones(256, dtype=np.float32),
        "blk.0.attn_q.weight": rng.standard_normal((4, 256)).astype(np.float16),
        "blk.0.ffn_up.weight": rng.standard_normal((2, 100)).astype(np.float32),
        "output.weight": rng.standard_normal((8, 256)).astype(np.float32),
    }


@pytest.fixture
def gguf_model(make_gguf, llama_tensors):
    """
    Fixture providing the path of a small llama-style GGUF model
    """
    return make_gguf("tiny-f32.gguf", llama_tensors)


# Pytest configuration
def pytest_configure(config):
    """
    Configure pytest with custom markers
    """
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
