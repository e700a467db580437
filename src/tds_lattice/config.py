"""
Configuration loading and validation for the lattice simulation.

Loads YAML config and validates every parameter against its physical domain.
The resulting ``SimulationConfig`` is threaded explicitly through
``Simulation`` / ``Physics`` construction; there is no module-level state, so
several simulations (e.g. a validator's shadow copy) can coexist.
"""

import math
import numbers
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Literal, Optional

import yaml

from .exceptions import InvalidParameterError


# Neighbour counts allowed for each dimensionality
CONNECTIVITY_BY_DIMENSION = {1: (2,), 2: (4, 8), 3: (6,)}


def _is_real(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def _first_non(check, names: tuple[str, ...], section: Any) -> Optional[str]:
    """Name of the first field of ``section`` failing ``check``, if any."""
    for name in names:
        if not check(getattr(section, name)):
            return name
    return None


@dataclass
class LatticeConfig:
    """Lattice geometry, boundary policy and initial state."""
    shape: list[int] = field(default_factory=lambda: [16, 16])
    boundary: Literal["open", "periodic"] = "periodic"
    connectivity: Optional[int] = None
    e_0: float = 1.0
    initial_spin: Literal["uniform", "random", "cosine"] = "uniform"
    initial_kx: int = 1
    seed: int = 42

    def validate(self) -> tuple[bool, Optional[str]]:
        if not isinstance(self.shape, (list, tuple)) or not 1 <= len(self.shape) <= 3:
            return False, "shape must have 1, 2 or 3 extents"
        if any(not _is_int(n) or n < 1 for n in self.shape):
            return False, "shape extents must be positive integers"
        bad = _first_non(_is_int, ("initial_kx", "seed"), self)
        if bad:
            return False, f"{bad} must be an integer"
        if not _is_real(self.e_0):
            return False, "e_0 must be a real number"
        if self.boundary not in ("open", "periodic"):
            return False, f"Unknown boundary policy: {self.boundary}"
        if self.connectivity is not None:
            allowed = CONNECTIVITY_BY_DIMENSION[len(self.shape)]
            if self.connectivity not in allowed:
                return False, f"connectivity must be one of {allowed} for a {len(self.shape)}D lattice"
        if not math.isfinite(self.e_0) or self.e_0 <= 0:
            return False, "e_0 must be positive"
        if self.initial_spin not in ("uniform", "random", "cosine"):
            return False, f"Unknown initial_spin pattern: {self.initial_spin}"
        if self.initial_kx < 0:
            return False, "initial_kx must be non-negative"
        return True, None

    @property
    def dimension(self) -> int:
        return len(self.shape)

    @property
    def effective_connectivity(self) -> int:
        if self.connectivity is not None:
            return self.connectivity
        return CONNECTIVITY_BY_DIMENSION[self.dimension][0]

    @property
    def extents(self) -> tuple[int, int, int]:
        """(nx, ny, nz), padding missing axes with 1."""
        padded = list(self.shape) + [1] * (3 - len(self.shape))
        return int(padded[0]), int(padded[1]), int(padded[2])


@dataclass
class DynamicsConfig:
    """Swap dynamics coupling."""
    J: float = 1.0

    def validate(self) -> tuple[bool, Optional[str]]:
        if not _is_real(self.J):
            return False, "J must be a real number"
        if not math.isfinite(self.J):
            return False, "J must be finite"
        return True, None


@dataclass
class ConservationConfig:
    """Energy conservation enforcement."""
    tolerance: float = 1e-6
    tolerance_mode: Literal["absolute", "relative"] = "absolute"
    hard_ceiling_factor: float = 100.0
    auto_correct: bool = True
    max_logged_corrections: int = 1000
    rate_window: int = 10

    def validate(self) -> tuple[bool, Optional[str]]:
        bad = _first_non(_is_real, ("tolerance", "hard_ceiling_factor"), self)
        if bad:
            return False, f"{bad} must be a real number"
        bad = _first_non(_is_int, ("max_logged_corrections", "rate_window"), self)
        if bad:
            return False, f"{bad} must be an integer"
        if not isinstance(self.auto_correct, bool):
            return False, "auto_correct must be a boolean"
        if not math.isfinite(self.tolerance) or self.tolerance <= 0:
            return False, "tolerance must be positive"
        if self.tolerance_mode not in ("absolute", "relative"):
            return False, f"Unknown tolerance_mode: {self.tolerance_mode}"
        if self.hard_ceiling_factor <= 1:
            return False, "hard_ceiling_factor must be > 1"
        if self.max_logged_corrections < 1:
            return False, "max_logged_corrections must be >= 1"
        if self.rate_window < 2:
            return False, "rate_window must be >= 2"
        return True, None


@dataclass
class AnomalyConfig:
    """Anomaly detector window and thresholds."""
    history_depth: int = 50
    persistence_threshold: float = 0.8
    vacuum_epsilon: float = 1e-12

    def validate(self) -> tuple[bool, Optional[str]]:
        if not _is_int(self.history_depth):
            return False, "history_depth must be an integer"
        bad = _first_non(_is_real, ("persistence_threshold", "vacuum_epsilon"), self)
        if bad:
            return False, f"{bad} must be a real number"
        if self.history_depth < 1:
            return False, "history_depth must be >= 1"
        if not 0.0 < self.persistence_threshold < 1.0:
            return False, "persistence_threshold must be in (0, 1)"
        if self.vacuum_epsilon < 0:
            return False, "vacuum_epsilon must be non-negative"
        return True, None


@dataclass
class ValidationConfig:
    """Reversibility score weights and conservation status thresholds."""
    spin_weight: float = 1.0
    state_weight: float = 1.0
    energy_weight: float = 1.0
    min_score: float = 0.95
    warning_threshold: float = 1e-6
    error_threshold: float = 1e-4
    max_history: int = 1000

    def validate(self) -> tuple[bool, Optional[str]]:
        bad = _first_non(
            _is_real,
            ("spin_weight", "state_weight", "energy_weight", "min_score", "warning_threshold", "error_threshold"),
            self,
        )
        if bad:
            return False, f"{bad} must be a real number"
        if not _is_int(self.max_history):
            return False, "max_history must be an integer"
        weights = (self.spin_weight, self.state_weight, self.energy_weight)
        if any(w < 0 for w in weights):
            return False, "score weights must be non-negative"
        if sum(weights) <= 0:
            return False, "at least one score weight must be positive"
        if not 0.0 <= self.min_score <= 1.0:
            return False, "min_score must be in [0, 1]"
        if self.warning_threshold <= 0:
            return False, "warning_threshold must be positive"
        if self.error_threshold < self.warning_threshold:
            return False, "error_threshold must be >= warning_threshold"
        if self.max_history < 1:
            return False, "max_history must be >= 1"
        return True, None


@dataclass
class AnalyticsConfig:
    """Instrumentation settings."""
    kx: int = 1
    rms_window: int = 100
    max_log_entries: int = 1500
    metrics_max_points: int = 1000
    metrics_sampling_interval: int = 1
    detect_events: bool = True

    def validate(self) -> tuple[bool, Optional[str]]:
        bad = _first_non(
            _is_int,
            ("kx", "rms_window", "max_log_entries", "metrics_max_points", "metrics_sampling_interval"),
            self,
        )
        if bad:
            return False, f"{bad} must be an integer"
        if not isinstance(self.detect_events, bool):
            return False, "detect_events must be a boolean"
        if self.kx < 0:
            return False, "kx must be non-negative"
        if self.rms_window < 1:
            return False, "rms_window must be >= 1"
        if self.max_log_entries < 1:
            return False, "max_log_entries must be >= 1"
        if self.metrics_max_points < 1:
            return False, "metrics_max_points must be >= 1"
        if self.metrics_sampling_interval < 1:
            return False, "metrics_sampling_interval must be >= 1"
        return True, None


@dataclass
class SimulationConfig:
    """Complete simulation configuration."""
    lattice: LatticeConfig = field(default_factory=LatticeConfig)
    dynamics: DynamicsConfig = field(default_factory=DynamicsConfig)
    conservation: ConservationConfig = field(default_factory=ConservationConfig)
    anomaly: AnomalyConfig = field(default_factory=AnomalyConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    history_capacity: int = 1000
    halt_on_fatal: bool = False

    def validate(self) -> tuple[bool, Optional[str]]:
        for section_name in SECTIONS:
            section = getattr(self, section_name)
            is_valid, error = section.validate()
            if not is_valid:
                return False, f"{section_name}: {error}"
        if not _is_int(self.history_capacity):
            return False, "history_capacity must be an integer"
        if not isinstance(self.halt_on_fatal, bool):
            return False, "halt_on_fatal must be a boolean"
        if self.history_capacity < 1:
            return False, "history_capacity must be >= 1"
        return True, None

    def ensure_valid(self) -> "SimulationConfig":
        """Raise InvalidParameterError unless the config validates."""
        is_valid, error = self.validate()
        if not is_valid:
            raise InvalidParameterError(f"Invalid configuration: {error}")
        return self


SECTIONS = {
    "lattice": LatticeConfig,
    "dynamics": DynamicsConfig,
    "conservation": ConservationConfig,
    "anomaly": AnomalyConfig,
    "validation": ValidationConfig,
    "analytics": AnalyticsConfig,
}

# Runtime-settable parameters: name -> (section or None for top level, field)
PARAMETERS = {
    "J": ("dynamics", "J"),
    "E_0": ("lattice", "e_0"),
    "tolerance": ("conservation", "tolerance"),
    "tolerance_mode": ("conservation", "tolerance_mode"),
    "hard_ceiling_factor": ("conservation", "hard_ceiling_factor"),
    "auto_correct": ("conservation", "auto_correct"),
    "history_depth": ("anomaly", "history_depth"),
    "persistence_threshold": ("anomaly", "persistence_threshold"),
    "kx": ("analytics", "kx"),
    "rms_window": ("analytics", "rms_window"),
    "min_score": ("validation", "min_score"),
    "history_capacity": (None, "history_capacity"),
    "halt_on_fatal": (None, "halt_on_fatal"),
}


def with_parameters(config: SimulationConfig, params: dict[str, Any]) -> SimulationConfig:
    """
    Return a validated copy of ``config`` with ``params`` applied.

    Args:
        config: Current configuration (left untouched).
        params: Mapping of names from ``PARAMETERS`` to new values.

    Raises:
        InvalidParameterError: Unknown key or out-of-domain value.
    """
    unknown = sorted(set(params) - set(PARAMETERS))
    if unknown:
        raise InvalidParameterError(f"Unknown parameter(s): {', '.join(unknown)}")

    section_updates: dict[Optional[str], dict[str, Any]] = {}
    for name, value in params.items():
        section_name, field_name = PARAMETERS[name]
        section_updates.setdefault(section_name, {})[field_name] = value

    top_level = section_updates.pop(None, {})
    sections = {
        name: replace(getattr(config, name), **updates)
        for name, updates in section_updates.items()
    }
    updated = replace(config, **sections, **top_level)
    return updated.ensure_valid()


def _build_section(cls, raw: Optional[dict]):
    raw = raw or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise InvalidParameterError(f"{cls.__name__}: unknown key(s) {', '.join(unknown)}")
    return cls(**raw)


def config_to_dict(config: SimulationConfig) -> dict:
    """Convert config to a plain serializable dict."""
    result = {}
    for section_name in SECTIONS:
        section = getattr(config, section_name)
        result[section_name] = {f.name: getattr(section, f.name) for f in fields(section)}
    result["history_capacity"] = config.history_capacity
    result["halt_on_fatal"] = config.halt_on_fatal
    return result


def load_config(path: Path) -> SimulationConfig:
    """
    Load and validate configuration from YAML file.

    Missing sections fall back to their defaults.

    Args:
        path: Path to YAML config file.

    Returns:
        Validated SimulationConfig.

    Raises:
        InvalidParameterError: If config is invalid or has unknown keys.
        FileNotFoundError: If file doesn't exist.
    """
    with open(path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    sections = {
        name: _build_section(cls, raw.get(name))
        for name, cls in SECTIONS.items()
    }

    config = SimulationConfig(
        **sections,
        history_capacity=raw.get("history_capacity", 1000),
        halt_on_fatal=raw.get("halt_on_fatal", False),
    )

    return config.ensure_valid()
