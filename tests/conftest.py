"""Shared fixtures: a stand-in predictor executable driven by its input file."""

from __future__ import annotations

import shlex
import sys
import textwrap
from pathlib import Path

import pytest

FAKE_PREDICTOR = textwrap.dedent(
    """
    import os, sys, time
    from pathlib import Path

    args = sys.argv[1:]
    assert args[0] == "predict", args
    mode = Path(args[1]).read_text().split()
    out_dir = Path(args[args.index("--out_dir") + 1])
    print("gpu", os.environ.get("CUDA_VISIBLE_DEVICES"), flush=True)

    if mode[0] == "sleep":
        time.sleep(float(mode[1]))
    if mode[0] == "fail":
        print("Error: CUDA out of memory", flush=True)
        sys.exit(1)
    if mode[0] == "noisy":
        print("MSA server error, retrying", flush=True)
    if mode[0] in ("ok", "sleep", "noisy"):
        pred = out_dir / "predictions" / "target"
        pred.mkdir(parents=True, exist_ok=True)
        (pred / "target_model_0.cif").write_text("data_target\\n")
        (pred / "confidence_target_model_0.json").write_text("{}")
    print("done", flush=True)
    """
)


@pytest.fixture
def fake_predictor(tmp_path) -> str:
    """Predictor command string: ``<python> <script>``."""
    script = tmp_path / "fake_boltz.py"
    script.write_text(FAKE_PREDICTOR)
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"


@pytest.fixture
def make_input(tmp_path):
    """Write an input file whose content selects the fake predictor's behaviour."""

    def _make(name: str, mode: str) -> Path:
        path = tmp_path / "inputs" / f"{name}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(mode)
        return path

    return _make
