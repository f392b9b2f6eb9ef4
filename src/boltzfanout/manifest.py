"""JSON manifest of a run's jobs, used to re-summarize a finished run."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Sequence

from boltzfanout.jobs import JobHandle

MANIFEST_NAME = "manifest.json"


def write_manifest(handles: Sequence[JobHandle], path: Path, **metadata) -> Path:
    """Write handle records (and optional run metadata) to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {**metadata, "jobs": [h.to_dict() for h in handles]}
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w") as f:
        json.dump(payload, f, indent=2)
    tmp.replace(path)
    return path


def load_manifest(path: Path) -> tuple[list[JobHandle], dict]:
    """Return ``(handles, metadata)`` from a manifest written by :func:`write_manifest`."""
    with open(path) as f:
        payload = json.load(f)
    if not isinstance(payload, dict) or "jobs" not in payload:
        raise ValueError(f"{path} is not a job manifest")
    handles = [JobHandle.from_dict(record) for record in payload["jobs"]]
    metadata = {k: v for k, v in payload.items() if k != "jobs"}
    return handles, metadata
