"""YAML loader for course catalogue files."""

from __future__ import annotations

from pathlib import Path

import msgspec
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .models import CourseCatalogue
from .validation import CatalogueValidationError, validate_catalogue

YAML_VERSION = (1, 2)


def load_catalogue(path: Path | str) -> CourseCatalogue:
    """Parse and validate a YAML course catalogue."""
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False

    try:
        loaded = yaml.load(Path(path).read_text(encoding="utf-8"))
    except (OSError, YAMLError) as exc:
        raise CatalogueValidationError([f"failed to parse YAML: {exc}"]) from exc

    if loaded is None:
        raise CatalogueValidationError(["catalogue file is empty"])

    try:
        catalogue = msgspec.convert(loaded, type=CourseCatalogue)
    except msgspec.ValidationError as exc:
        raise CatalogueValidationError([f"schema validation failed: {exc}"]) from exc

    return validate_catalogue(catalogue)
