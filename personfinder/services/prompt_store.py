"""Prompt catalog loaded from `personfinder/prompts/prompts.json`.

Keys are dotted paths (`extraction.system`). Templates use `$name`
placeholders and are rendered with `string.Template`.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

_catalog: dict[str, Any] | None = None
_catalog_mtime_ns: int | None = None


def load_catalog(path: Path = PROMPTS_PATH) -> dict[str, Any]:
    """Read the catalog, reusing the parsed copy while the file is unchanged."""
    global _catalog, _catalog_mtime_ns
    mtime_ns = path.stat().st_mtime_ns
    if _catalog is not None and _catalog_mtime_ns == mtime_ns:
        return _catalog

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Prompt catalog must be a JSON object: {path}")
    _catalog, _catalog_mtime_ns = payload, mtime_ns
    return payload


def get_template(key: str) -> str:
    node: Any = load_catalog()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if isinstance(node, list):
        # Long prompts are stored one line per entry.
        node = "\n".join(str(line) for line in node)
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string or list of lines: {key}")
    return node


def render_prompt(key: str, **values: Any) -> str:
    template = Template(get_template(key))
    try:
        return template.substitute(**values)
    except KeyError as exc:
        missing = str(exc.args[0])
        raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc


def clear_prompt_cache() -> None:
    global _catalog, _catalog_mtime_ns
    _catalog = None
    _catalog_mtime_ns = None
