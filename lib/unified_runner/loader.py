"""Scenario loading - Extended JSON and YAML scenario files"""

from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml
from bson import json_util

from .errors import ConfigurationError

SCENARIO_SUFFIXES = (".json", ".yml", ".yaml")


def load_scenario_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Load one scenario document.

    ``.json`` files are read as Extended JSON. YAML files are parsed, then
    round-tripped through Extended JSON so ``$oid`` / ``$numberLong`` style
    values become BSON types as well.
    """
    path = Path(path)
    if path.suffix not in SCENARIO_SUFFIXES:
        raise ConfigurationError(f"Unsupported scenario file type: {path}")

    with open(path, "r", encoding="utf-8") as f:
        text = f.read()

    if path.suffix == ".json":
        scenario = json_util.loads(text)
    else:
        scenario = json_util.loads(json_util.dumps(yaml.safe_load(text)))

    if not isinstance(scenario, dict) or "tests" not in scenario:
        raise ConfigurationError(f"{path} is not a scenario document")
    return scenario


def load_scenario_directory(path: Union[str, Path]) -> List[Tuple[Path, Dict[str, Any]]]:
    """Load every scenario file under ``path``, sorted by file name."""
    root = Path(path)
    if not root.is_dir():
        raise FileNotFoundError(f"Scenario directory not found: {root}")

    files = sorted(p for p in root.rglob("*") if p.suffix in SCENARIO_SUFFIXES)
    return [(file, load_scenario_file(file)) for file in files]
