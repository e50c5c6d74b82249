"""
Engine configuration loader.

Defaults ship in ``engine_defaults.yaml`` next to this module. A deployment
can point ``load_config`` at its own YAML/JSON file, and any value can be
overridden with a ``CROSSDOC_*`` environment variable (a ``.env`` file in the
working directory is honoured).

Usage:
    from core.config import get_config

    config = get_config()
    if score >= config.alignment_threshold:
        ...
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_DEFAULTS_PATH = os.path.join(os.path.dirname(__file__), "engine_defaults.yaml")

STRATEGIES = ("conservative", "aggressive", "balanced", "align_to_protocol")


@dataclass
class EngineConfig:
    """Tunable thresholds and defaults for alignment, rules and inference."""

    # Alignment
    # Overrides move the aligned/unaligned boundary away from 0.5
    alignment_threshold: float = 0.5
    objective_low_similarity: float = 0.7
    population_overlap_threshold: float = 0.3

    # Document content checks
    mechanism_min_length: int = 50
    target_population_min_length: int = 50

    # Auto-fix
    default_strategy: str = "align_to_protocol"

    # Rule engine
    parallel_rules: bool = False
    max_rule_workers: int = 4

    # Study flow inference
    treatment_default_days: int = 84
    follow_up_offset_days: int = 30
    screening_day: int = -14
    min_visit_spacing_days: int = 3
    default_visit_schedule: List[str] = field(default_factory=lambda: [
        "Screening", "Baseline", "Week 2", "Week 4", "Week 8", "Week 12",
        "End of Treatment", "Follow-up",
    ])

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create config from a flat dict, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        config = cls(**filtered)
        _validate(config)
        return config


def _flatten(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map the sectioned YAML layout onto EngineConfig field names."""
    alignment = raw.get("alignment", {}) or {}
    documents = raw.get("documents", {}) or {}
    autofix = raw.get("autofix", {}) or {}
    rules = raw.get("rules", {}) or {}
    flow = raw.get("study_flow", {}) or {}

    flat: Dict[str, Any] = {}
    mapping = [
        (alignment, "threshold", "alignment_threshold"),
        (alignment, "objective_low_similarity", "objective_low_similarity"),
        (alignment, "population_overlap_threshold", "population_overlap_threshold"),
        (documents, "mechanism_min_length", "mechanism_min_length"),
        (documents, "target_population_min_length", "target_population_min_length"),
        (autofix, "default_strategy", "default_strategy"),
        (rules, "parallel", "parallel_rules"),
        (rules, "max_workers", "max_rule_workers"),
        (flow, "treatment_default_days", "treatment_default_days"),
        (flow, "follow_up_offset_days", "follow_up_offset_days"),
        (flow, "screening_day", "screening_day"),
        (flow, "min_visit_spacing_days", "min_visit_spacing_days"),
        (flow, "default_visit_schedule", "default_visit_schedule"),
    ]
    for section, key, field_name in mapping:
        if key in section:
            flat[field_name] = section[key]

    # Already-flat files (e.g. saved with to_dict) are accepted as well
    for key, value in raw.items():
        if key in EngineConfig.__dataclass_fields__:
            flat[key] = value
    return flat


def _validate(config: EngineConfig) -> None:
    for name in ("alignment_threshold", "objective_low_similarity", "population_overlap_threshold"):
        value = getattr(config, name)
        if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
            raise ConfigurationError(f"{name} must be a number in [0, 1], got {value!r}")
    if config.default_strategy not in STRATEGIES:
        raise ConfigurationError(
            f"default_strategy must be one of {', '.join(STRATEGIES)}, got {config.default_strategy!r}"
        )
    if config.max_rule_workers < 1:
        raise ConfigurationError("max_rule_workers must be >= 1")
    if not isinstance(config.default_visit_schedule, list):
        raise ConfigurationError("default_visit_schedule must be a list of visit names")


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read config file {path}", cause=e)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _load_from_env(values: Dict[str, Any]) -> Dict[str, Any]:
    """Override config values with environment variables."""
    env_mappings = {
        "CROSSDOC_ALIGNMENT_THRESHOLD": ("alignment_threshold", float),
        "CROSSDOC_OBJECTIVE_LOW_SIMILARITY": ("objective_low_similarity", float),
        "CROSSDOC_POPULATION_OVERLAP": ("population_overlap_threshold", float),
        "CROSSDOC_DEFAULT_STRATEGY": ("default_strategy", str),
        "CROSSDOC_TREATMENT_DAYS": ("treatment_default_days", int),
        "CROSSDOC_FOLLOW_UP_OFFSET_DAYS": ("follow_up_offset_days", int),
        "CROSSDOC_PARALLEL_RULES": ("parallel_rules", bool),
    }
    result = dict(values)
    for env_var, (field_name, field_type) in env_mappings.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        try:
            if field_type is bool:
                result[field_name] = value.lower() in ("true", "1", "yes")
            else:
                result[field_name] = field_type(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_var}: {value!r}", cause=e)
        logger.debug(f"Config override from {env_var}")
    return result


def load_config(config_path: Optional[str] = None) -> EngineConfig:
    """
    Load configuration.

    Args:
        config_path: Optional YAML/JSON file layered over the shipped defaults.

    Returns:
        EngineConfig with defaults, file values and env overrides applied.
    """
    load_dotenv()

    values = _flatten(_read_file(Path(_DEFAULTS_PATH)))

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        values.update(_flatten(_read_file(path)))
        logger.info(f"Loaded config from {path}")

    values = _load_from_env(values)
    return EngineConfig.from_dict(values)


@lru_cache(maxsize=1)
def get_config() -> EngineConfig:
    """Get the cached engine config built from defaults and environment."""
    return load_config()
