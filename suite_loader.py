"""Filesystem loader turning test files into explicit TestSuite values."""
from __future__ import annotations

import importlib.util
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

import yaml

from exceptions import TestLoadError, TestValidationError
from test_types import TestDefinition, TestSuite

DATA_SUFFIXES = {".yaml", ".yml", ".json"}


def _as_list(value: Any) -> List[str]:
    """Convert value to list of strings."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    if isinstance(value, str):
        return [value]
    raise TestLoadError(f"Expected string or list, got {type(value).__name__}")


def _parse_definition(data: Dict[str, Any], fallback_name: str) -> TestDefinition:
    """Parse a dictionary into a TestDefinition."""
    if not isinstance(data, dict):
        raise TestLoadError("Test entry must be a mapping")

    name = str(data.get("name") or data.get("test") or fallback_name).strip()
    if not name:
        raise TestValidationError("Test is missing a 'name' field", field="name")

    if data.get("direct"):
        raise TestValidationError(
            "Direct-execution tests need a code callback; declare them in a Python test file",
            test_name=name,
            field="direct",
        )

    max_turns = data.get("max_turns")
    if max_turns is not None:
        try:
            max_turns = int(max_turns)
        except (TypeError, ValueError) as e:
            raise TestValidationError("max_turns must be an integer", test_name=name, field="max_turns") from e
        if max_turns < 1:
            raise TestValidationError("max_turns must be at least 1", test_name=name, field="max_turns")

    return TestDefinition(
        name=name,
        steps=_as_list(data.get("steps")),
        payload=data.get("payload"),
        max_turns=max_turns,
    )


def _load_data_file(path: Path) -> TestSuite:
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise TestLoadError(f"Failed to read test file: {e}", file_path=str(path)) from e

    if isinstance(data, dict) and "tests" in data:
        entries = data["tests"]
        suite_name = str(data.get("name") or path.stem)
    elif isinstance(data, list):
        entries = data
        suite_name = path.stem
    elif isinstance(data, dict):
        entries = [data]
        suite_name = path.stem
    else:
        raise TestLoadError("Test file must contain a mapping or a list", file_path=str(path))

    if not isinstance(entries, list):
        raise TestLoadError("'tests' must be a list", file_path=str(path))

    suite = TestSuite(suite_name)
    for index, entry in enumerate(entries, 1):
        suite.add(_parse_definition(entry, f"{path.stem}-{index}"))
    return suite


def _load_python_file(path: Path) -> TestSuite:
    module_name = f"cachepilot_tests.{path.stem.replace('.', '_')}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise TestLoadError("Cannot import test file", file_path=str(path))
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise TestLoadError(f"Failed to import test file: {e}", file_path=str(path)) from e
    finally:
        sys.modules.pop(module_name, None)

    suite = getattr(module, "suite", None)
    if not isinstance(suite, TestSuite):
        raise TestLoadError("Test module must define a module-level 'suite = TestSuite(...)'", file_path=str(path))
    if not suite.name:
        suite.name = path.stem
    return suite


def load_test_file(path: Path) -> TestSuite:
    """Load a single test file (Python module, YAML or JSON)."""
    if not path.exists():
        raise TestLoadError(f"Test file does not exist: {path}", file_path=str(path))
    if path.suffix == ".py":
        suite = _load_python_file(path)
    elif path.suffix in DATA_SUFFIXES:
        suite = _load_data_file(path)
    else:
        raise TestLoadError(f"Unsupported test file type: {path.suffix}", file_path=str(path))

    names = [t.name for t in suite.tests]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise TestValidationError(f"Duplicate test names: {', '.join(duplicates)}", field="name")
    return suite


def discover_test_files(
    roots: Iterable[Path],
    patterns: Sequence[str],
) -> List[Path]:
    """
    Find test files under each root matching any of the glob patterns.

    Explicit file paths are returned as-is. Results are de-duplicated and sorted.
    """
    found: set[Path] = set()
    for root in roots:
        root = Path(root).expanduser()
        if root.is_file():
            found.add(root.resolve())
            continue
        if not root.exists():
            raise TestLoadError(f"Test directory does not exist: {root}")
        for pattern in patterns:
            found.update(p.resolve() for p in root.glob(pattern) if p.is_file())
    return sorted(found)
