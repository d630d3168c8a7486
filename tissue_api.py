"""
Host-facing operations on a brain.

Flat functions for hosts that prefer ``op(brain, ...)`` over methods
(harnesses, services, bindings).  Every result is returned by value:
id sequences as lists, text as ``str``.

Usage::

    import tissue_api as api

    brain = api.build_brain({"neurons": 600, "connections": 1000, "seed": 7})
    for sensor in api.get_sensors(brain):
        api.trigger_impulse(brain, sensor, 10.0)
    api.process(brain, 5)
    found, potential = api.effector_potential_release(brain, api.get_effectors(brain)[0])
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Union

import tissue_builder
import tissue_serde
from tissue_config import BrainBuilderConfig
from tissue_foundation import Arrival, Brain, BrainActivityMap, BrainActivityStats, StepResult

ConfigLike = Union[BrainBuilderConfig, Dict[str, Any], None]


def build_brain(config: ConfigLike = None) -> Brain:
    """Generate a brain from a config object or a dict of field overrides.

    Raises:
        ConfigError: Invalid or unsatisfiable config.
    """
    if isinstance(config, dict):
        config = BrainBuilderConfig.from_dict(config)
    return tissue_builder.build_brain(config)


def get_sensors(brain: Brain) -> List[str]:
    return brain.get_sensors()


def get_effectors(brain: Brain) -> List[str]:
    return brain.get_effectors()


def trigger_impulse(brain: Brain, sensor_id: str, amount: float) -> None:
    """Raises ``NotFoundError`` unless ``sensor_id`` is a live Sensor."""
    brain.trigger_impulse(sensor_id, amount)


def process(brain: Brain, steps: int = 1) -> List[StepResult]:
    """Advance ``steps`` ticks; on ``SimulationError`` the brain is unchanged."""
    return brain.process(steps)


def effector_potential_release(brain: Brain, effector_id: str) -> Tuple[bool, float]:
    return brain.effector_potential_release(effector_id)


def get_synapse_count(brain: Brain) -> int:
    return brain.synapse_count()


def ignite_random_synapses(
    brain: Brain, count: int, min_value: float, max_value: float
) -> List[Arrival]:
    """Raises ``RangeError`` (brain unchanged) when ``count`` exceeds the synapses."""
    return tissue_builder.ignite_random_synapses(brain, count, min_value, max_value)


def grow(brain: Brain, neurons: int = 1, connections: int = 0) -> List[str]:
    return tissue_builder.grow(brain, neurons, connections)


def reconnect(brain: Brain, count: int = 1) -> int:
    return tissue_builder.reconnect(brain, count)


def serialize_yaml(brain: Brain) -> str:
    return tissue_serde.serialize_yaml(brain)


def deserialize_yaml(text: str, strict: bool = False, clear_pending: bool = False) -> Brain:
    """Raises ``ParseError`` on malformed text (any anomaly when ``strict``)."""
    return tissue_serde.deserialize_yaml(text, strict=strict, clear_pending=clear_pending)


def activity_stats(brain: Brain) -> BrainActivityStats:
    return brain.activity_stats()


def activity_map(brain: Brain) -> BrainActivityMap:
    return brain.activity_map()


def checkpoint(brain: Brain, path: str) -> None:
    brain.checkpoint(path)


def restore(path: str, strict: bool = True) -> Brain:
    return Brain.restore(path, strict=strict)


__all__ = [
    "build_brain",
    "get_sensors",
    "get_effectors",
    "trigger_impulse",
    "process",
    "effector_potential_release",
    "get_synapse_count",
    "ignite_random_synapses",
    "grow",
    "reconnect",
    "serialize_yaml",
    "deserialize_yaml",
    "activity_stats",
    "activity_map",
    "checkpoint",
    "restore",
]
