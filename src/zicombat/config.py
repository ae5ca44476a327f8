"""
Control parameters for batch adjustment.

Supports YAML and JSON config files. A config file may either hold the control
keys at top level or nest them under an ``adjust_batch`` section:

    adjust_batch:
      zero_inflation: true
      conv: 1.0e-4
      maxit: 1000
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from zicombat.errors import ConfigurationError

__all__ = ['AdjustBatchControl', 'load_config', 'load_control']

ABUNDANCE_TYPES = ("auto", "counts", "proportions")


@dataclass(frozen=True)
class AdjustBatchControl:
    """
    Control parameters for a single adjustment run.

    Attributes:
        zero_inflation: Treat exact zeros as structurally missing; they are
            excluded from location/scale fitting and restored afterwards.
        pseudo_count: Added before log2 transform. None picks half the
            smallest non-zero relative abundance.
        conv: Relative-change tolerance for the shrinkage iteration.
        maxit: Maximum shrinkage iterations per batch.
        abundance_type: "counts", "proportions", or "auto" to infer from the
            table. Counts are rounded on output.
        n_jobs: Worker threads for per-feature and per-batch stages.
    """
    zero_inflation: bool = True
    pseudo_count: Optional[float] = None
    conv: float = 1e-4
    maxit: int = 1000
    abundance_type: str = "auto"
    n_jobs: int = 1

    def __post_init__(self):
        if not isinstance(self.zero_inflation, bool):
            raise ConfigurationError(
                f"zero_inflation must be a boolean, got {self.zero_inflation!r}"
            )
        if self.pseudo_count is not None and not self.pseudo_count > 0:
            raise ConfigurationError(
                f"pseudo_count must be positive, got {self.pseudo_count}"
            )
        if not self.conv > 0:
            raise ConfigurationError(f"conv must be positive, got {self.conv}")
        if isinstance(self.maxit, bool) or not isinstance(self.maxit, int) or self.maxit < 1:
            raise ConfigurationError(f"maxit must be a positive integer, got {self.maxit!r}")
        if self.abundance_type not in ABUNDANCE_TYPES:
            raise ConfigurationError(
                f"abundance_type must be one of {ABUNDANCE_TYPES}, got {self.abundance_type!r}"
            )
        if isinstance(self.n_jobs, bool) or not isinstance(self.n_jobs, int) or self.n_jobs < 1:
            raise ConfigurationError(f"n_jobs must be a positive integer, got {self.n_jobs!r}")

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]]) -> AdjustBatchControl:
        """
        Build a control from a mapping, rejecting unknown keys.

        Examples:
            >>> AdjustBatchControl.from_dict({"zero_inflation": False}).maxit
            1000
        """
        values = dict(values or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown control parameter(s): {unknown}. Valid keys: {sorted(known)}"
            )
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Parameters:
        config_path: Path to config file (.yaml, .yml, or .json)

    Returns:
        Dictionary with configuration values

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If file format is unsupported or invalid
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    try:
        with open(config_path, 'r') as f:
            if suffix in ('.yaml', '.yml'):
                config = yaml.safe_load(f)
            elif suffix == '.json':
                config = json.load(f)
            else:
                raise ConfigurationError(
                    f"Unsupported config format: {suffix}. "
                    f"Use .yaml, .yml, or .json"
                )
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file: {e}") from e

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ConfigurationError("Config file must contain a dictionary/mapping at top level")

    return config


def load_control(config_path: Path, section: str = "adjust_batch") -> AdjustBatchControl:
    """Read an AdjustBatchControl from a config file (optionally nested under `section`)."""
    config = load_config(config_path)
    if section in config:
        config = config[section] or {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"Config section '{section}' must be a mapping")
    return AdjustBatchControl.from_dict(config)
