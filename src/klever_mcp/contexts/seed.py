"""Load seed contexts from YAML."""

from pathlib import Path
from typing import Any

import yaml

from ..errors import ValidationError


def load_seed_file(yaml_path: str | Path) -> list[dict[str, Any]]:
    """
    Load wire-form context payloads from a YAML file.

    The document is either a list of payloads or a mapping with a
    top-level `contexts` list. Payloads are not validated here; each one is
    validated when it is ingested.

    Args:
        yaml_path: Path to the seed file

    Returns:
        List of payload mappings

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the YAML is malformed
        ValidationError: If the document has the wrong shape
    """
    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise FileNotFoundError(f"Seed file not found: {yaml_path}")

    with open(yaml_file, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("contexts", [])
    if not isinstance(data, list):
        raise ValidationError(
            f"Invalid seed file structure: expected a list of contexts, got {type(data).__name__}"
        )
    return data
