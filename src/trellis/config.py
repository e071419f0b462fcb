"""Engine configuration -- ``.trellis/config.json`` discovery and settings.

Convention-based discovery: a project may carry a ``.trellis/`` directory
containing ``config.json`` (tuning knobs) and ``trellis.log``. Every setting
has a default, so the engine runs without any configuration at all.

Environment variables override the file:
    TRELLIS_UPGRADE_THRESHOLD        readiness percent needed to upgrade
    TRELLIS_DEFAULT_DURATION_HOURS   duration for items without an estimate
    TRELLIS_BOTTLENECK_TOP_N         number of bottlenecks to report
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, TypedDict

logger = logging.getLogger(__name__)

TRELLIS_DIR_NAME = ".trellis"
CONFIG_FILENAME = "config.json"


class ProjectConfig(TypedDict, total=False):
    """Shape of .trellis/config.json."""

    version: int
    readiness: dict[str, Any]
    analysis: dict[str, Any]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReadinessSettings:
    """Blend weights and the upgrade bar for readiness scoring."""

    required_weight: float = 0.7
    optional_weight: float = 0.3
    upgrade_threshold: int = 80
    min_scope_items: int = 1

    def __post_init__(self) -> None:
        if not (0 <= self.required_weight <= 1 and 0 <= self.optional_weight <= 1):
            msg = "readiness weights must be between 0 and 1"
            raise ValueError(msg)
        if abs(self.required_weight + self.optional_weight - 1.0) > 1e-9:
            msg = f"readiness weights must sum to 1, got {self.required_weight} + {self.optional_weight}"
            raise ValueError(msg)
        if not (0 <= self.upgrade_threshold <= 100):
            msg = f"upgrade_threshold must be between 0 and 100, got {self.upgrade_threshold}"
            raise ValueError(msg)
        if self.min_scope_items < 0:
            msg = f"min_scope_items must be >= 0, got {self.min_scope_items}"
            raise ValueError(msg)


@dataclass(frozen=True)
class AnalysisSettings:
    """Critical-path defaults and health-score penalties."""

    default_duration_hours: float = 8.0
    bottleneck_top_n: int = 5
    cycle_penalty: float = 15.0
    cycle_penalty_cap: float = 60.0
    orphan_penalty: float = 2.0
    conflict_penalty: float = 20.0

    def __post_init__(self) -> None:
        if not math.isfinite(self.default_duration_hours) or self.default_duration_hours <= 0:
            msg = f"default_duration_hours must be a finite number > 0, got {self.default_duration_hours}"
            raise ValueError(msg)
        if self.bottleneck_top_n < 0:
            msg = f"bottleneck_top_n must be >= 0, got {self.bottleneck_top_n}"
            raise ValueError(msg)
        for name in ("cycle_penalty", "cycle_penalty_cap", "orphan_penalty", "conflict_penalty"):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                msg = f"{name} must be a finite number >= 0, got {value}"
                raise ValueError(msg)


@dataclass(frozen=True)
class EngineSettings:
    readiness: ReadinessSettings = field(default_factory=ReadinessSettings)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)


DEFAULT_SETTINGS = EngineSettings()

_ENV_OVERRIDES: dict[str, tuple[str, str, type]] = {
    "TRELLIS_UPGRADE_THRESHOLD": ("readiness", "upgrade_threshold", int),
    "TRELLIS_DEFAULT_DURATION_HOURS": ("analysis", "default_duration_hours", float),
    "TRELLIS_BOTTLENECK_TOP_N": ("analysis", "bottleneck_top_n", int),
}


# ---------------------------------------------------------------------------
# Discovery and file I/O
# ---------------------------------------------------------------------------


def find_trellis_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for a .trellis/ directory.

    Returns the .trellis/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / TRELLIS_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {TRELLIS_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(trellis_dir: Path) -> ProjectConfig:
    """Read .trellis/config.json. Returns defaults if missing or corrupt."""
    defaults = ProjectConfig(version=1)
    config_path = trellis_dir / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        result = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults
    if not isinstance(result, dict):
        logger.warning("%s must contain a JSON object, using defaults", config_path)
        return defaults
    config: ProjectConfig = result  # type: ignore[assignment]
    return config


def write_config(trellis_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .trellis/config.json."""
    config_path = trellis_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# Settings resolution
# ---------------------------------------------------------------------------


def _coerce(value: Any, target: type) -> Any:
    """Coerce a JSON/env value to int or float; bools, NaN and infinities are rejected."""
    if isinstance(value, bool):
        raise TypeError("boolean is not a number")
    if target is int:
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"{value} is not an integer")
        return int(value)
    try:
        number = float(value)
    except OverflowError as exc:
        raise ValueError(f"{value} is out of range") from exc
    if not math.isfinite(number):
        raise ValueError(f"{number} is not a finite number")
    return number


def _apply_section(base: Any, raw: Any, section: str) -> Any:
    """Overlay one config section onto a settings dataclass, key by key.

    Invalid keys or values are skipped with a warning so one typo does not
    discard the rest of the file.
    """
    if raw is None:
        return base
    if not isinstance(raw, dict):
        logger.warning("Config section '%s' must be an object, ignoring", section)
        return base
    known = {f.name for f in fields(base)}
    updates: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Unknown config key '%s.%s', ignoring", section, key)
            continue
        target = int if isinstance(getattr(base, key), int) else float
        try:
            updates[key] = _coerce(value, target)
        except (TypeError, ValueError) as exc:
            logger.warning("Invalid value for '%s.%s' (%r): %s", section, key, value, exc)

    # Cross-field checks (weights summing to 1) need the keys applied together.
    try:
        return replace(base, **updates)
    except ValueError as exc:
        logger.warning("Config section '%s' rejected as a whole (%s), applying keys one by one", section, exc)

    result = base
    for key, value in updates.items():
        try:
            result = replace(result, **{key: value})
        except ValueError as exc:
            logger.warning("Invalid value for '%s.%s' (%r): %s -- keeping %r", section, key, value, exc, getattr(result, key))
    return result


def load_settings(config: ProjectConfig | dict[str, Any] | None = None, *, environ: dict[str, str] | None = None) -> EngineSettings:
    """Resolve :class:`EngineSettings` from config + environment overrides."""
    config = config or {}
    env = os.environ if environ is None else environ

    readiness = _apply_section(ReadinessSettings(), config.get("readiness"), "readiness")
    analysis = _apply_section(AnalysisSettings(), config.get("analysis"), "analysis")
    sections: dict[str, Any] = {"readiness": readiness, "analysis": analysis}

    for var, (section, key, target) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw.strip() == "":
            continue
        try:
            sections[section] = replace(sections[section], **{key: _coerce(raw.strip(), target)})
        except (TypeError, ValueError) as exc:
            logger.warning("Unparseable %s=%r, ignoring: %s", var, raw, exc)

    return EngineSettings(readiness=sections["readiness"], analysis=sections["analysis"])


def discover_settings(start: Path | None = None) -> EngineSettings:
    """Load settings from the nearest .trellis/ (defaults when there is none)."""
    try:
        trellis_dir = find_trellis_root(start)
    except FileNotFoundError:
        return load_settings()
    return load_settings(read_config(trellis_dir))
