"""
Brain builder configuration.

Provides a single ``BrainBuilderConfig`` dataclass holding every generation
and simulation parameter of a brain: population sizes, spatial extent,
propagation speed, decay rates, neurogenesis and reconnection ranges, the
optional growth/rewiring cadence, and the RNG seed.  Configuration can be
loaded from a dict of overrides, a YAML or JSON file, or left at defaults.

Usage::

    from tissue_config import BrainBuilderConfig, load_brain_config

    # Defaults
    cfg = load_brain_config()

    # With overrides
    cfg = load_brain_config({"neurons": 600, "connections": 1000, "seed": 7})

    # From a YAML file
    cfg = load_brain_config(config_path="~/brains/cortex.yaml")
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from tissue_errors import ConfigError

logger = logging.getLogger("neurotissue.config")

# Fields whose value is a non-negative integer count
_COUNT_FIELDS = (
    "neurons",
    "connections",
    "sensors",
    "effectors",
    "max_connecting_tries",
    "neurogenesis_interval",
    "neurogenesis_neurons",
    "neurogenesis_connections",
    "reconnection_interval",
    "reconnection_count",
)

_FLOAT_FIELDS = (
    "radius",
    "propagation_speed",
    "neuron_potential_decay",
    "synapse_propagation_decay",
    "min_neurogenesis_range",
    "max_neurogenesis_range",
    "firing_threshold",
    "max_potential",
)


@dataclass
class BrainBuilderConfig:
    """Generation and simulation parameters of a brain.

    Attributes:
        neurons: Number of neurons placed inside the sphere.
        connections: Number of synapses wired at build time.
        sensors: Neurons tagged as Sensor (input).
        effectors: Neurons tagged as Effector (output).
        radius: Radius of the bounding sphere centred at the origin.
        propagation_speed: Distance units a signal travels per step.
        neuron_potential_decay: Per-step multiplicative retention in (0, 1].
        synapse_propagation_decay: Per-transmission retention in (0, 1].
        min_neurogenesis_range: Minimum distance of a grown neuron from its origin.
        max_neurogenesis_range: Maximum growth distance; also the radius
            used to bias synapse pair selection toward neighbours.
        synapse_reconnection_range: Rewiring radius; ``None`` disables rewiring.
        synapse_new_connection_receptors: Fixed receptor count for new
            synapses; ``None`` draws from ``default_receptors``.
        default_receptors: Inclusive integer range for random receptor counts.
        firing_threshold: A neuron fires when its potential exceeds this.
        no_loop_connections: Forbid A->B when B->A already exists.
        max_connecting_tries: Spatial attempts per synapse before falling
            back to a uniform pair.
        neurogenesis_interval: Ticks between automatic growth events (0 = off).
        neurogenesis_neurons: Neurons grown per automatic growth event.
        neurogenesis_connections: Extra synapses per automatic growth event.
        reconnection_interval: Ticks between automatic rewiring events (0 = off).
        reconnection_count: Synapses rewired per automatic rewiring event.
        max_potential: Magnitude beyond which a potential counts as runaway.
        seed: RNG seed; ``None`` draws fresh entropy.
    """

    neurons: int = 100
    connections: int = 0
    sensors: int = 1
    effectors: int = 1
    radius: float = 10.0
    propagation_speed: float = 1.0
    neuron_potential_decay: float = 1.0
    synapse_propagation_decay: float = 1.0
    min_neurogenesis_range: float = 0.1
    max_neurogenesis_range: float = 1.0
    synapse_reconnection_range: Optional[float] = None
    synapse_new_connection_receptors: Optional[int] = None
    default_receptors: Tuple[int, int] = (1, 3)
    firing_threshold: float = 0.0
    no_loop_connections: bool = True
    max_connecting_tries: int = 10
    neurogenesis_interval: int = 0
    neurogenesis_neurons: int = 1
    neurogenesis_connections: int = 1
    reconnection_interval: int = 0
    reconnection_count: int = 1
    max_potential: float = 1e12
    seed: Optional[int] = None

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------

    def validate(self) -> "BrainBuilderConfig":
        """Check every invariant; raise ``ConfigError`` on the first violation.

        Returns self so calls can be chained.
        """
        for name in _COUNT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigError(f"{name} must be non-negative, got {value}")

        for name in _FLOAT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ConfigError(f"{name} must be finite, got {value}")

        if self.sensors + self.effectors > self.neurons:
            raise ConfigError(
                f"sensors ({self.sensors}) + effectors ({self.effectors}) "
                f"exceed neurons ({self.neurons})"
            )
        if self.radius <= 0.0:
            raise ConfigError(f"radius must be positive, got {self.radius}")
        if self.propagation_speed <= 0.0:
            raise ConfigError(
                f"propagation_speed must be positive, got {self.propagation_speed}"
            )
        for name in ("neuron_potential_decay", "synapse_propagation_decay"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ConfigError(f"{name} must lie in (0, 1], got {value}")
        if self.min_neurogenesis_range < 0.0:
            raise ConfigError("min_neurogenesis_range must be non-negative")
        if self.min_neurogenesis_range > self.max_neurogenesis_range:
            raise ConfigError(
                f"min_neurogenesis_range ({self.min_neurogenesis_range}) exceeds "
                f"max_neurogenesis_range ({self.max_neurogenesis_range})"
            )
        if self.synapse_reconnection_range is not None:
            srr = self.synapse_reconnection_range
            if isinstance(srr, bool) or not isinstance(srr, (int, float)):
                raise ConfigError(f"synapse_reconnection_range must be a number, got {srr!r}")
            if not (math.isfinite(srr) and srr > 0.0):
                raise ConfigError(f"synapse_reconnection_range must be positive, got {srr}")
        if self.reconnection_interval and self.synapse_reconnection_range is None:
            raise ConfigError("reconnection_interval requires synapse_reconnection_range")
        if self.synapse_new_connection_receptors is not None:
            rec = self.synapse_new_connection_receptors
            if isinstance(rec, bool) or not isinstance(rec, int) or rec < 0:
                raise ConfigError(
                    f"synapse_new_connection_receptors must be a non-negative integer, got {rec!r}"
                )
        if not isinstance(self.default_receptors, (tuple, list)) or len(self.default_receptors) != 2:
            raise ConfigError(f"default_receptors must be two integers, got {self.default_receptors!r}")
        lo, hi = self.default_receptors
        if isinstance(lo, bool) or isinstance(hi, bool) or not (
            isinstance(lo, int) and isinstance(hi, int)
        ):
            raise ConfigError(f"default_receptors must be two integers, got {self.default_receptors!r}")
        if lo < 0 or lo > hi:
            raise ConfigError(f"default_receptors range is invalid: {self.default_receptors}")
        if self.max_potential <= 0.0:
            raise ConfigError("max_potential must be positive")
        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, int)):
            raise ConfigError(f"seed must be an integer or None, got {self.seed!r}")
        return self

    # -----------------------------------------------------------------------
    # Dict conversion
    # -----------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["default_receptors"] = list(self.default_receptors)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], strict: bool = True) -> "BrainBuilderConfig":
        """Build a validated config from a plain mapping.

        Args:
            data: Field name to value mapping (e.g. parsed YAML).
            strict: Reject unknown keys when True; log and ignore them otherwise.

        Raises:
            ConfigError: Unknown keys (strict) or invalid values.
        """
        if not isinstance(data, dict):
            raise ConfigError(f"config must be a mapping, got {type(data).__name__}")
        cfg = cls()
        _apply_overrides(cfg, data, strict=strict)
        return cfg.validate()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_FIELD_NAMES = frozenset(f.name for f in fields(BrainBuilderConfig))


def _apply_overrides(obj: BrainBuilderConfig, overrides: Dict[str, Any], strict: bool = False) -> None:
    """Apply a dict of overrides to a config instance (in-place)."""
    for key, value in overrides.items():
        if key not in _FIELD_NAMES:
            if strict:
                raise ConfigError(f"Unknown config key: {key}")
            logger.warning("Ignoring unknown config key %r", key)
            continue
        if key == "default_receptors" and isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise ConfigError(f"default_receptors needs two values, got {value!r}")
            value = (value[0], value[1])
        elif key in _FLOAT_FIELDS and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        elif key == "synapse_reconnection_range" and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)
        setattr(obj, key, value)


def _read_config_file(path: Path) -> Dict[str, Any]:
    with open(path) as f:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"top level of {path} is not a mapping")
    return data


def load_brain_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> BrainBuilderConfig:
    """Create a validated ``BrainBuilderConfig``, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` YAML (``.yaml``/``.yml``) or JSON file
        3. Built-in defaults

    Args:
        overrides: Dict of field -> value pairs.
        config_path: Path to a file holding the same structure.

    Returns:
        Fully populated and validated ``BrainBuilderConfig``.

    Raises:
        ConfigError: The merged configuration is invalid.
    """
    cfg = BrainBuilderConfig()

    # Layer 1: file
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                file_data = _read_config_file(p)
            except (OSError, ValueError, yaml.YAMLError) as exc:
                logger.warning("Failed to load brain config from %s: %s", p, exc)
            else:
                _apply_overrides(cfg, file_data)
        else:
            logger.warning("Brain config file %s does not exist; using defaults", p)

    # Layer 2: dict overrides (win over file)
    if overrides is not None:
        _apply_overrides(cfg, overrides)

    return cfg.validate()
