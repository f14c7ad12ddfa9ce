"""Build request files.

Build requests can be kept in YAML or JSON files next to the project they
package. Relative paths inside a request file are resolved against the
file's own directory.

Example (YAML):

    source: dist/MyApp.app
    destination: dist/MyApp.dmg
    styled: true
    include_system_requirements: true
    readme:
      mode: file
      path: README.md
"""

import json
from pathlib import Path
from typing import Any

import yaml

from apptodmg.builds.models import BuildRequest

YAML_SUFFIXES = {".yaml", ".yml"}


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _resolve(base: Path, value: Any) -> Any:
    if isinstance(value, str) and value:
        path = Path(value).expanduser()
        return str(path if path.is_absolute() else base / path)
    return value


def parse_request_data(data: dict[str, Any], base_path: Path) -> BuildRequest:
    """Validate request data, resolving relative paths against base_path.

    Raises:
        pydantic.ValidationError: If data does not match the request model.
    """
    data = dict(data)
    for key in ("source", "destination"):
        if key in data:
            data[key] = _resolve(base_path, data[key])

    readme = data.get("readme")
    if isinstance(readme, dict) and "path" in readme:
        readme = dict(readme)
        readme["path"] = _resolve(base_path, readme["path"])
        data["readme"] = readme

    return BuildRequest.model_validate(data)


def load_request_file(path: Path) -> BuildRequest:
    """Load and validate a build request from a YAML or JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError / json.JSONDecodeError: If the file cannot be parsed.
        pydantic.ValidationError: If data does not match the request model.
        ValueError: If the document is not a mapping.
    """
    if path.suffix.lower() in YAML_SUFFIXES:
        data = load_yaml(path)
    else:
        data = load_json(path)
    return parse_request_data(data, path.parent)


__all__ = [
    "load_json",
    "load_request_file",
    "load_yaml",
    "parse_request_data",
]
