"""Harness configuration loaded from YAML with OmegaConf.

Config precedence: dataclass defaults -> base config -> run config ->
``key=value`` CLI overrides.  Example::

    predictor: boltz
    gpus: "0,1,2,3"
    common_flags: "--use_msa_server"
    poll_interval_sec: 30
    jobs:
      - {name: simple_protein, input: test_simple.yaml}
      - {name: protein_ligand, input: protein_ligand_affinity.yaml, gpu: 3,
         flags: "--recycling_steps 10 --diffusion_samples 25"}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from omegaconf import DictConfig, OmegaConf

from boltzfanout.classify import (
    DEFAULT_ARTIFACT_SUBDIR,
    DEFAULT_ARTIFACT_SUFFIXES,
    DEFAULT_FAILURE_TOKENS,
)
from boltzfanout.errors import ConfigError
from boltzfanout.launcher import DEFAULT_GPU_ENV_VAR


@dataclass
class HarnessConfig:
    """Harness settings with defaults matching configs/examples_8gpu.yaml."""

    # Predictor
    predictor: str = "boltz"
    common_flags: str = ""
    jobs: list[dict[str, Any]] = field(default_factory=list)

    # Devices
    gpus: Any = "all"  # "all" | "0,1,2" | [0, 1, 2]
    gpu_env_var: str = DEFAULT_GPU_ENV_VAR

    # Output layout
    output_root: str = "."
    run_prefix: str = "multi_gpu_results"

    # Monitoring
    poll_interval_sec: float = 30.0
    telemetry_interval_sec: float = 60.0
    telemetry_enabled: bool = True
    timeout_sec: float | None = None
    kill_grace_sec: float = 10.0

    # Classification
    artifact_subdir: str = DEFAULT_ARTIFACT_SUBDIR
    artifact_suffixes: list[str] = field(default_factory=lambda: list(DEFAULT_ARTIFACT_SUFFIXES))
    failure_tokens: list[str] = field(default_factory=lambda: list(DEFAULT_FAILURE_TOKENS))

    def validate(self) -> None:
        if self.poll_interval_sec <= 0:
            raise ConfigError("poll_interval_sec must be positive")
        if self.telemetry_interval_sec <= 0:
            raise ConfigError("telemetry_interval_sec must be positive")
        if self.timeout_sec is not None and self.timeout_sec <= 0:
            raise ConfigError("timeout_sec must be positive when set")
        if not self.failure_tokens:
            raise ConfigError("failure_tokens must not be empty")
        if not isinstance(self.jobs, list):
            raise ConfigError("jobs must be a list of {name, input, flags, gpu} entries")
        for index, job in enumerate(self.jobs):
            if not isinstance(job, dict):
                raise ConfigError(f"jobs[{index}] must be a mapping, got {type(job).__name__}")


def build_config(cfg: DictConfig | dict, *, strict: bool = True) -> HarnessConfig:
    """Build a :class:`HarnessConfig` from an OmegaConf node or plain dict."""
    data = OmegaConf.to_container(cfg, resolve=True) if isinstance(cfg, DictConfig) else dict(cfg)
    known = set(HarnessConfig.__dataclass_fields__)
    unknown = sorted(str(k) for k in data if k not in known)
    if unknown and strict:
        raise ConfigError(f"Unknown harness config keys: {', '.join(unknown)}")

    kwargs = {k: v for k, v in data.items() if k in known}
    config = HarnessConfig(**kwargs)
    config.validate()
    return config


def load_config(
    config_path: str | Path | None = None,
    *,
    base_config: str | Path | None = None,
    overrides: Sequence[str] = (),
    values: Mapping[str, Any] | None = None,
    strict: bool = True,
) -> HarnessConfig:
    """Load and merge YAML configs, then apply dotlist overrides.

    ``values`` (typically from CLI options) are applied last.
    """
    layers = [OmegaConf.create({})]
    for path in (base_config, config_path):
        if path is None:
            continue
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        layers.append(OmegaConf.load(path))
    if overrides:
        layers.append(OmegaConf.from_dotlist(list(overrides)))
    if values:
        layers.append(OmegaConf.create(dict(values)))
    return build_config(OmegaConf.merge(*layers), strict=strict)
