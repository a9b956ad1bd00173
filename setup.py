"""
Setup script for gguf-quantize
"""

from setuptools import setup, find_packages
from pathlib import Path
import re

# Read version from __init__.py
init_file = Path(__file__).parent / "gguf_quantize" / "__init__.py"
version_match = re.search(r'^__version__\s*=\s*["\']([^"\']+)["\']', init_file.read_text(), re.MULTILINE)
version = version_match.group(1) if version_match else "0.0.0"

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="gguf-quantize",
    version=version,
    description="Quantize safetensors, npz, pytorch and GGUF model weights into GGUF files",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["gguf_quantize", "gguf_quantize.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=[
        "numpy>=2.0.0",
        "gguf>=0.15.0",
        "torch>=2.0.0",
        "safetensors>=0.4.0",
        "colorama>=0.4.6",
    ],
    extras_require={
        "dev": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "gguf-quantize=gguf_quantize.cli:main",
        ],
    },
)
