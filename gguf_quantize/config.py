"""
User configuration stored as JSON in the home directory
"""

from pathlib import Path
import json
from typing import Dict, Any

# Config file location
CONFIG_FILE = Path.home() / ".gguf_quantize_config.json"


def get_default_config() -> Dict[str, Any]:
    """Get default configuration"""
    return {
        "quantization": "q4k",
        "mode": None,  # None = llama for GGUF input, baseline otherwise
        "num_workers": None,  # None = CPU cores - 1
        "verbose": False,
    }


def load_config() -> Dict[str, Any]:
    """Load configuration from file"""
    if CONFIG_FILE.exists():
        try:
            with open(CONFIG_FILE, 'r') as f:
                saved_config = json.load(f)

            config = get_default_config()
            config.update(saved_config)
            return config
        except (OSError, ValueError) as e:
            print(f"Warning: Could not load config: {e}", flush=True)
            return get_default_config()
    return get_default_config()


def save_config(config: Dict[str, Any]) -> None:
    """Save configuration to file"""
    try:
        with open(CONFIG_FILE, 'w') as f:
            json.dump(config, f, indent=2)
    except OSError as e:
        print(f"Warning: Could not save config: {e}", flush=True)


def reset_config() -> Dict[str, Any]:
    """Reset configuration to defaults"""
    config = get_default_config()
    save_config(config)
    return config
