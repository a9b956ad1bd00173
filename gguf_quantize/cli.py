#!/usr/bin/env python3
"""
Command-line interface for gguf-quantize
"""

import argparse
import json
import sys

from colorama import Style

from .config import get_default_config, load_config, reset_config, save_config
from .converter import list_tensors, run_quantize
from .errors import ConversionError, UsageError
from .formats import Format
from .quantization.codecs import Codec
from .quantization.policy import QuantizationMode
from .theme import THEME as theme


def _codec_name(value: str) -> str:
    try:
        return Codec.parse(value).value
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _config_value(key: str, value: str):
    """Convert a ``config --set`` value to the type stored in the config file"""
    if key == "quantization":
        return Codec.parse(value).value
    if key == "mode":
        return None if value.lower() in ("auto", "none") else QuantizationMode.parse(value).value
    if key == "num_workers":
        return None if value.lower() in ("auto", "none") else int(value)
    return value.lower() in ("1", "true", "yes", "on")


def _run_config(args) -> None:
    config = reset_config() if args.reset else load_config()
    if args.set:
        for key, value in args.set:
            if key not in get_default_config():
                raise UsageError(f"Unknown config key: {key}. Supported: {sorted(get_default_config())}")
            try:
                config[key] = _config_value(key, value)
            except ValueError as e:
                raise UsageError(str(e)) from None
        save_config(config)
    print(json.dumps(config, indent=2), flush=True)


def build_parser(config=None) -> argparse.ArgumentParser:
    config = config or load_config()

    parser = argparse.ArgumentParser(
        prog="gguf-quantize",
        description="Quantize safetensors, npz, pytorch or GGUF models into a GGUF file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Quantize a sharded safetensors model to Q4_K
  gguf-quantize quantize model-00001.safetensors model-00002.safetensors --out-file model-q4k.gguf

  # Requantize a GGUF file to Q8_0, keeping its metadata
  gguf-quantize quantize model-f16.gguf --out-file model-q8_0.gguf -q q8_0

  # Quantize every 2D tensor with the plain rule
  gguf-quantize quantize weights.npz --out-file weights.gguf --mode baseline

  # List the tensors of a file
  gguf-quantize ls model-f16.gguf

  # Make Q8_0 the default codec
  gguf-quantize config --set quantization q8_0
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    quantize = subparsers.add_parser("quantize", help="Quantize model files into a GGUF file")
    quantize.add_argument("in_files", nargs="+", help="Input model files")
    quantize.add_argument("--out-file", "-o", required=True, help="Output GGUF file")
    quantize.add_argument(
        "-q", "--quantization",
        choices=[c.value for c in Codec],
        type=_codec_name,
        default=config["quantization"],
        help=f"Codec to quantize with (default: {config['quantization']})"
    )
    quantize.add_argument(
        "--mode",
        choices=[m.value for m in QuantizationMode],
        default=config["mode"],
        help=f"Quantization mode (default: {config['mode'] or 'llama for GGUF input, baseline otherwise'})"
    )
    quantize.add_argument(
        "--workers",
        type=int,
        default=config["num_workers"],
        help="Number of worker processes (default: CPU cores - 1, 1 = serial)"
    )
    quantize.add_argument(
        "--format",
        choices=[f.value for f in Format],
        default=None,
        help="Source format if it cannot be inferred from the extension"
    )
    quantize.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=config["verbose"],
        help="Enable verbose output"
    )

    ls = subparsers.add_parser("ls", help="List the tensors of a model file")
    ls.add_argument("file", help="Model file")
    ls.add_argument(
        "--format",
        choices=[f.value for f in Format],
        default=None,
        help="Source format if it cannot be inferred from the extension"
    )

    cfg = subparsers.add_parser("config", help="Show or change the saved defaults")
    cfg.add_argument(
        "--set",
        nargs=2,
        action="append",
        metavar=("KEY", "VALUE"),
        help="Store a default (quantization, mode, num_workers, verbose); use auto to clear mode or num_workers"
    )
    cfg.add_argument("--reset", action="store_true", help="Restore the built-in defaults first")
    return parser


def main(argv=None):
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)

    try:
        if args.command == "config":
            _run_config(args)
        elif args.command == "ls":
            for name, shape, type_name in list_tensors(args.file, args.format):
                print(f"{name:<48} {type_name:<8} {list(shape)}", flush=True)
        else:
            run_quantize(
                args.in_files,
                args.out_file,
                args.quantization,
                mode=args.mode,
                num_workers=args.workers,
                source_format=args.format,
                verbose=args.verbose,
            )
        return 0

    except ConversionError as e:
        print(f"\n{theme['error']}Error during {e.stage}: {e}{Style.RESET_ALL}", file=sys.stderr, flush=True)
        return 1
    except OSError as e:
        print(f"\n{theme['error']}Error: {e}{Style.RESET_ALL}", file=sys.stderr, flush=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
