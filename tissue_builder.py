"""
Spatial graph generation and structural mutation.

``build_brain`` places neurons uniformly inside a sphere, tags sensors and
effectors, and wires synapses preferring spatial neighbours.  The mutators
change an existing brain between ticks:

    - ``grow``: neurogenesis, new neurons budding off existing ones
    - ``reconnect``: redirect synapse targets within the reconnection range
    - ``ignite_random_synapses``: schedule immediate arrivals on random synapses

Every random draw uses ``brain.rng``, so a seeded config reproduces both the
topology and every later mutation.

Usage::

    from tissue_builder import build_brain, grow, ignite_random_synapses
    brain = build_brain(load_brain_config({"neurons": 600, "seed": 3}))
    grow(brain, neurons=10, connections=20)
    ignite_random_synapses(brain, 5, 1.0, 2.0)
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional

import numpy as np

from tissue_config import BrainBuilderConfig
from tissue_errors import ConfigError, RangeError
from tissue_foundation import Arrival, Brain, NeuronRole, Position, Synapse

logger = logging.getLogger("neurotissue.builder")


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------

def _random_direction(rng: np.random.Generator) -> np.ndarray:
    """Unit vector uniformly distributed on the sphere."""
    while True:
        v = rng.normal(size=3)
        norm = float(np.linalg.norm(v))
        if norm > 1e-12:
            return v / norm


def random_point_in_sphere(rng: np.random.Generator, radius: float) -> Position:
    """Point uniformly distributed inside a ball of ``radius`` at the origin."""
    r = radius * float(rng.random()) ** (1.0 / 3.0)
    x, y, z = _random_direction(rng) * r
    return Position(float(x), float(y), float(z))


def offset_position(
    rng: np.random.Generator, origin: Position, distance: float, radius: float
) -> Position:
    """Point ``distance`` away from ``origin`` in a random direction, pulled
    back onto the sphere surface when it lands outside ``radius``."""
    dx, dy, dz = _random_direction(rng) * distance
    pos = Position(origin.x + float(dx), origin.y + float(dy), origin.z + float(dz))
    magnitude = pos.magnitude()
    if magnitude > radius:
        scale = radius / magnitude
        pos = Position(pos.x * scale, pos.y * scale, pos.z * scale)
    return pos


# ---------------------------------------------------------------------------
# Pair selection
# ---------------------------------------------------------------------------

class _Candidates:
    """Vectorised view of neuron positions and roles for pair selection."""

    def __init__(self, brain: Brain, neuron_ids: Optional[Iterable[str]] = None):
        self.ids: List[str] = list(brain.neurons if neuron_ids is None else neuron_ids)
        self.index = {nid: i for i, nid in enumerate(self.ids)}
        self.positions = np.array(
            [brain.neurons[nid].position.to_list() for nid in self.ids], dtype=float
        ).reshape(-1, 3)
        roles = [brain.neurons[nid].role for nid in self.ids]
        self.can_send = np.array([r is not NeuronRole.EFFECTOR for r in roles], dtype=bool)
        self.can_receive = np.array([r is not NeuronRole.SENSOR for r in roles], dtype=bool)

    def within(self, i: int, max_range: float) -> np.ndarray:
        """Mask of neurons no farther than ``max_range`` from neuron ``i``."""
        d = np.linalg.norm(self.positions - self.positions[i], axis=1)
        return d <= max_range


def _connect_neighbours(brain: Brain, cand: _Candidates, exhaustive: bool = False) -> Optional[Synapse]:
    """Wire one new synapse.

    Tries ``max_connecting_tries`` spatially biased pairs (target within
    ``max_neurogenesis_range`` of the source), then as many uniform pairs.
    With ``exhaustive`` a final scan over every sender guarantees a synapse
    whenever one is still possible.
    """
    cfg = brain.config
    rng = brain.rng
    senders = np.flatnonzero(cand.can_send)
    receivers = np.flatnonzero(cand.can_receive)
    if senders.size == 0 or receivers.size == 0:
        return None

    for _ in range(cfg.max_connecting_tries):
        src = int(senders[rng.integers(senders.size)])
        near = cand.can_receive & cand.within(src, cfg.max_neurogenesis_range)
        near[src] = False
        options = np.flatnonzero(near)
        if options.size == 0:
            continue
        dst = int(options[rng.integers(options.size)])
        syn = brain.create_synapse(cand.ids[src], cand.ids[dst])
        if syn is not None:
            return syn

    for _ in range(cfg.max_connecting_tries):
        src = int(senders[rng.integers(senders.size)])
        dst = int(receivers[rng.integers(receivers.size)])
        if src == dst:
            continue
        syn = brain.create_synapse(cand.ids[src], cand.ids[dst])
        if syn is not None:
            return syn

    if not exhaustive:
        return None
    for src in rng.permutation(senders):
        source_id = cand.ids[int(src)]
        options = [
            int(dst)
            for dst in receivers
            if dst != src and brain._pair_available(source_id, cand.ids[int(dst)])
        ]
        if options:
            dst = options[int(rng.integers(len(options)))]
            return brain.create_synapse(source_id, cand.ids[dst])
    return None


def connection_capacity(config: BrainBuilderConfig) -> int:
    """Number of distinct synapses a freshly built brain can hold."""
    senders = config.neurons - config.effectors
    receivers = config.neurons - config.sensors
    internal = config.neurons - config.sensors - config.effectors
    capacity = senders * receivers - internal
    if config.no_loop_connections:
        # Internal pairs may only be wired one way
        capacity -= internal * (internal - 1) // 2
    return max(capacity, 0)


# ---------------------------------------------------------------------------
# Spatial Graph Generator
# ---------------------------------------------------------------------------

def build_brain(config: Optional[BrainBuilderConfig] = None) -> Brain:
    """Generate a brain from a config.

    Neurons are placed uniformly inside the sphere; exactly ``sensors``
    and ``effectors`` of them are tagged, chosen without overlap; exactly
    ``connections`` synapses are wired.

    Raises:
        ConfigError: The config is invalid or asks for more synapses than
            the population can hold.
    """
    cfg = (config or BrainBuilderConfig()).validate()
    capacity = connection_capacity(cfg)
    if cfg.connections > capacity:
        raise ConfigError(
            f"connections ({cfg.connections}) exceed the {capacity} distinct "
            f"synapses {cfg.neurons} neurons can hold"
        )

    brain = Brain(cfg)
    rng = brain.rng

    positions = [random_point_in_sphere(rng, cfg.radius) for _ in range(cfg.neurons)]
    roles = [NeuronRole.INTERNAL] * cfg.neurons
    tagged = rng.choice(cfg.neurons, size=cfg.sensors + cfg.effectors, replace=False)
    for k, i in enumerate(tagged):
        roles[int(i)] = NeuronRole.SENSOR if k < cfg.sensors else NeuronRole.EFFECTOR
    for position, role in zip(positions, roles):
        brain.create_neuron(position, role)

    cand = _Candidates(brain)
    for n in range(cfg.connections):
        if _connect_neighbours(brain, cand, exhaustive=True) is None:
            raise ConfigError(f"Topology saturated after {n} of {cfg.connections} synapses")

    logger.info(
        "Built brain: %d neurons (%d sensors, %d effectors), %d synapses",
        len(brain.neurons), cfg.sensors, cfg.effectors, brain.synapse_count(),
    )
    return brain


# ---------------------------------------------------------------------------
# Structural Mutator
# ---------------------------------------------------------------------------

def grow_neurons(brain: Brain, neurons: int, connections: int) -> List[str]:
    """Neurogenesis without the rollback wrapper; used inside ticks.

    Each new Internal neuron buds off a random existing neuron at a
    distance in [min_neurogenesis_range, max_neurogenesis_range] and is
    wired to it (origin -> new, or new -> origin when the origin is an
    Effector).  Then up to ``connections`` extra synapses are wired.
    """
    cfg = brain.config
    rng = brain.rng
    new_ids: List[str] = []

    for _ in range(neurons):
        if not brain.neurons:
            new_ids.append(brain.create_neuron(Position()).neuron_id)
            continue
        origin_ids = list(brain.neurons)
        origin = brain.neurons[origin_ids[int(rng.integers(len(origin_ids)))]]
        distance = float(rng.uniform(cfg.min_neurogenesis_range, cfg.max_neurogenesis_range))
        neuron = brain.create_neuron(offset_position(rng, origin.position, distance, cfg.radius))
        if origin.role is NeuronRole.EFFECTOR:
            brain.create_synapse(neuron.neuron_id, origin.neuron_id)
        else:
            brain.create_synapse(origin.neuron_id, neuron.neuron_id)
        new_ids.append(neuron.neuron_id)

    if connections and len(brain.neurons) > 1:
        cand = _Candidates(brain)
        wired = sum(
            1 for _ in range(connections) if _connect_neighbours(brain, cand) is not None
        )
        if wired < connections:
            logger.debug("Neurogenesis wired %d of %d extra synapses", wired, connections)

    brain._neurons_grown += len(new_ids)
    return new_ids


def grow(brain: Brain, neurons: int = 1, connections: int = 0) -> List[str]:
    """Grow ``neurons`` new neurons and up to ``connections`` extra synapses.

    All-or-nothing: on failure the brain is left as it was.

    Returns:
        Ids of the new neurons.
    """
    if neurons < 0 or connections < 0:
        raise ValueError("neurons and connections must be non-negative")
    with brain.atomic():
        new_ids = grow_neurons(brain, neurons, connections)
    logger.info("Grew %d neurons at step %d", len(new_ids), brain.timestep)
    brain._emit("grew", neuron_ids=new_ids)
    return new_ids


def rewire_synapses(brain: Brain, count: int) -> int:
    """Reconnection without the rollback wrapper; used inside ticks.

    Samples ``count`` synapses without replacement and redirects each to a
    random valid neuron within ``synapse_reconnection_range`` of its current
    target.  Synapses without a candidate are left alone.

    Returns:
        Number of synapses actually rewired.
    """
    max_range = brain.config.synapse_reconnection_range
    if count == 0 or max_range is None:
        return 0
    rng = brain.rng
    syn_ids = list(brain.synapses)
    picks = rng.choice(len(syn_ids), size=count, replace=False)
    cand = _Candidates(brain)

    rewired = 0
    for k in picks:
        syn = brain.synapses[syn_ids[int(k)]]
        t_idx = cand.index[syn.target_id]
        mask = cand.can_receive & cand.within(t_idx, max_range)
        mask[t_idx] = False
        mask[cand.index[syn.source_id]] = False
        options = [
            cand.ids[int(i)]
            for i in np.flatnonzero(mask)
            if brain._pair_available(syn.source_id, cand.ids[int(i)])
        ]
        if not options:
            continue
        brain.rewire_synapse(syn.synapse_id, options[int(rng.integers(len(options)))])
        rewired += 1

    brain._synapses_rewired += rewired
    return rewired


def reconnect(brain: Brain, count: int = 1) -> int:
    """Rewire ``count`` random synapses within the reconnection range.

    Raises:
        ConfigError: ``synapse_reconnection_range`` is not configured.
        RangeError: ``count`` exceeds the synapse count.
    """
    if brain.config.synapse_reconnection_range is None:
        raise ConfigError("Reconnection requires synapse_reconnection_range")
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    if count > brain.synapse_count():
        raise RangeError(f"Cannot rewire {count} of {brain.synapse_count()} synapses")
    with brain.atomic():
        rewired = rewire_synapses(brain, count)
    logger.debug("Rewired %d of %d sampled synapses", rewired, count)
    brain._emit("rewired", count=rewired)
    return rewired


def ignite_random_synapses(
    brain: Brain, count: int, min_value: float, max_value: float
) -> List[Arrival]:
    """Schedule an immediate arrival on ``count`` distinct random synapses.

    Each arrival targets the synapse's target neuron, carries a potential
    drawn uniformly from [min_value, max_value], and is delivered at the
    start of the next tick.  Topology is untouched.

    Raises:
        RangeError: ``count`` exceeds the synapse count (brain unchanged).
        ValueError: Negative count or an invalid value range.
    """
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    if count > brain.synapse_count():
        raise RangeError(f"Cannot ignite {count} of {brain.synapse_count()} synapses")
    if not (math.isfinite(min_value) and math.isfinite(max_value)):
        raise ValueError("Ignition values must be finite")
    if min_value > max_value:
        raise ValueError(f"min_value ({min_value}) exceeds max_value ({max_value})")
    if count == 0:
        return []

    with brain.atomic():
        rng = brain.rng
        syn_ids = list(brain.synapses)
        arrivals = []
        for k in rng.choice(len(syn_ids), size=count, replace=False):
            syn = brain.synapses[syn_ids[int(k)]]
            value = float(rng.uniform(min_value, max_value))
            arrivals.append(
                brain.schedule_arrival(syn.target_id, value, delay=0, synapse_id=syn.synapse_id)
            )
    brain._emit("ignited", count=count)
    return arrivals
