"""
Load workflow definitions stored as JSON files.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

from pydantic import BaseModel

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


class WorkflowSummary(BaseModel):
    name: str
    description: str
    file: str


def _read_json(path: Path) -> Dict[str, Any]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Workflow file {path} must contain a JSON object")
    return payload


def load_workflow(name_or_path: PathLike, search_dirs: Iterable[PathLike] = ()) -> Dict[str, Any]:
    """
    Read a definition from a file path, or by name from ``search_dirs``
    (``<dir>/<name>.json``). The raw mapping is returned unvalidated so
    callers can choose strict or draft validation.
    """

    direct = Path(name_or_path)
    if direct.is_file():
        return _read_json(direct)

    stem = direct.name[:-5] if direct.name.endswith(".json") else direct.name
    for directory in search_dirs:
        candidate = Path(directory) / f"{stem}.json"
        if candidate.is_file():
            return _read_json(candidate)

    with_suffix = direct if direct.suffix == ".json" else direct.with_name(f"{direct.name}.json")
    if with_suffix.is_file():
        return _read_json(with_suffix)

    raise FileNotFoundError(f"Workflow not found: {name_or_path}")


def list_workflows(directory: PathLike) -> List[WorkflowSummary]:
    root = Path(directory)
    if not root.is_dir():
        return []

    summaries: List[WorkflowSummary] = []
    for path in sorted(root.glob("*.json")):
        try:
            payload = _read_json(path)
            description = payload.get("description") or payload.get("name") or path.name
        except (OSError, ValueError) as exc:
            LOGGER.warning("Could not read workflow %s: %s", path, exc)
            description = "(error reading)"
        summaries.append(WorkflowSummary(name=path.stem, description=str(description), file=path.name))
    return summaries
