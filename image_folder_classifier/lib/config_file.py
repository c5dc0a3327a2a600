import json
from pathlib import Path
from typing import Any, Dict, Union

import yaml


def load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML or JSON configuration file into a plain dictionary."""
    config_path = Path(config_file)
    if config_path.suffix.lower() in [".yaml", ".yml"]:
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f)
    elif config_path.suffix.lower() == ".json":
        with open(config_path, "r") as f:
            config_data = json.load(f)
    else:
        raise ValueError(f"Unsupported config file format: {config_path.suffix}")

    # An empty YAML document loads as None
    return config_data or {}
