"""
Neural Tissue Foundation - spatial spiking graph and propagation engine.

Implements the simulation core: a sparse graph of neurons placed in 3D
space and directed synapses whose delay is derived from the distance
between their endpoints.  Potential moves along synapses through a delay
buffer of scheduled arrivals; sensors accept external impulses and
effectors expose accumulated potential for readout.

Design principles:
    - Sparse by default: dict/list topology, no dense matrices
    - Deterministic: every random draw comes from the brain's own seeded
      numpy Generator, never from process-wide state
    - All-or-nothing mutation: ``process`` and structural edits roll back
      to their starting state on failure
    - Persistence-native: all state, RNG included, is serializable
"""

from __future__ import annotations

import copy
import logging
import math
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

import numpy as np

from tissue_config import BrainBuilderConfig
from tissue_errors import NotFoundError, SimulationError

logger = logging.getLogger("neurotissue.brain")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class NeuronRole(Enum):
    """Role of a neuron; fixed at creation."""
    INTERNAL = "internal"
    SENSOR = "sensor"
    EFFECTOR = "effector"


# ---------------------------------------------------------------------------
# Core Data Structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Position:
    """Point in 3D space."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def distance(self, other: "Position") -> float:
        dx = self.x - other.x
        dy = self.y - other.y
        dz = self.z - other.z
        return math.sqrt(dx * dx + dy * dy + dz * dz)

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y) and math.isfinite(self.z)

    def to_list(self) -> List[float]:
        return [self.x, self.y, self.z]

    @classmethod
    def from_list(cls, values: List[float]) -> "Position":
        x, y, z = values
        return cls(float(x), float(y), float(z))


@dataclass
class Neuron:
    """Node of the tissue graph.

    Attributes:
        neuron_id: Opaque stable identifier (UUID4 string).
        position: Location inside the brain's bounding sphere; immutable.
        potential: Current potential; always finite.
        decay: Per-step multiplicative retention in (0, 1].
        role: INTERNAL, SENSOR or EFFECTOR.
    """

    neuron_id: str
    position: Position = field(default_factory=Position)
    potential: float = 0.0
    decay: float = 1.0
    role: NeuronRole = NeuronRole.INTERNAL


@dataclass
class Synapse:
    """Directed, delayed, decaying connection between two neurons.

    Attributes:
        synapse_id: Opaque stable identifier; survives rewiring.
        source_id: Firing neuron.
        target_id: Receiving neuron; changed only by reconnection.
        receptors: Transmission strength (non-negative integer).
        decay: Multiplicative retention applied to every transmission.
        distance: Euclidean distance between the endpoints.
        delay: Steps between firing and arrival; always >= 1.
    """

    synapse_id: str
    source_id: str
    target_id: str
    receptors: int = 1
    decay: float = 1.0
    distance: float = 0.0
    delay: int = 1

    @property
    def transmission_factor(self) -> float:
        """Fraction of the source potential carried: r / (r + 1), in [0, 1)."""
        return self.receptors / (self.receptors + 1.0)


@dataclass
class Arrival:
    """Scheduled potential delivery: at ``due_step`` add ``potential`` to
    ``target_id``.

    ``synapse_id`` and ``scheduled_step`` locate the impulse in flight for
    activity maps; ``synapse_id`` is None once the carrying synapse is gone.
    """

    due_step: int
    target_id: str
    potential: float
    synapse_id: Optional[str] = None
    scheduled_step: int = 0


# ---------------------------------------------------------------------------
# Step Result / Stats / Activity Map
# ---------------------------------------------------------------------------

@dataclass
class StepResult:
    """Result of a single tick.

    Attributes:
        step: The step index this tick processed.
        fired_neuron_ids: Neurons that transmitted along their synapses.
        arrivals_delivered: Scheduled arrivals applied at the start of the tick.
        neurons_grown: Neurons created by automatic neurogenesis.
        synapses_rewired: Synapses redirected by automatic reconnection.
    """

    step: int = 0
    fired_neuron_ids: List[str] = field(default_factory=list)
    arrivals_delivered: int = 0
    neurons_grown: int = 0
    synapses_rewired: int = 0


@dataclass
class BrainActivityStats:
    """Read-only activity snapshot; recomputed on demand, never persisted."""

    step: int = 0
    neurons: int = 0
    synapses: int = 0
    sensors: int = 0
    effectors: int = 0
    active_neurons: int = 0
    fired_last_step: int = 0
    total_potential: float = 0.0
    mean_potential: float = 0.0
    max_potential: float = 0.0
    pending_arrivals: int = 0
    pending_potential: float = 0.0
    mean_receptors: float = 0.0
    neurons_grown: int = 0
    synapses_rewired: int = 0


@dataclass
class BrainActivityMap:
    """Spatial picture of the brain for visualizers.

    Attributes:
        connections: (source position, target position) per synapse.
        impulses: (source position, target position, progress in [0, 1])
            per in-flight arrival still attached to a synapse.
        sensors: Sensor positions.
        effectors: Effector positions.
    """

    connections: List[Tuple[Position, Position]] = field(default_factory=list)
    impulses: List[Tuple[Position, Position, float]] = field(default_factory=list)
    sensors: List[Position] = field(default_factory=list)
    effectors: List[Position] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Brain Container
# ---------------------------------------------------------------------------

# Attributes captured by snapshots for rollback
_STATE_ATTRS = (
    "neurons",
    "synapses",
    "_outgoing",
    "_incoming",
    "_pairs",
    "_role_index",
    "_delay_buffer",
    "timestep",
    "_fired_last_step",
    "_neurons_grown",
    "_synapses_rewired",
)


class Brain:
    """Owns all neurons, synapses and in-flight arrivals; runs the simulation
    and provides the stimulus/readout API.

    Topology is sparse: dicts keyed by id plus ordered adjacency lists.
    Insertion order is significant and preserved by serialization, so two
    brains with equal documents evolve identically.

    Args:
        config: Generation/simulation parameters (defaults if None).
    """

    def __init__(self, config: Optional[BrainBuilderConfig] = None):
        self.config = (config or BrainBuilderConfig()).validate()

        # --- Core collections (sparse, insertion ordered) ---
        self.neurons: Dict[str, Neuron] = {}
        self.synapses: Dict[str, Synapse] = {}

        # --- Adjacency indices: neuron_id -> synapse_ids in creation order ---
        self._outgoing: Dict[str, List[str]] = {}
        self._incoming: Dict[str, List[str]] = {}
        # (source, target) pairs for O(1) duplicate checks
        self._pairs: Set[Tuple[str, str]] = set()
        self._role_index: Dict[NeuronRole, List[str]] = {role: [] for role in NeuronRole}

        # --- Delay buffer: due step -> arrivals in scheduling order ---
        self._delay_buffer: Dict[int, List[Arrival]] = {}

        # --- Randomness owned by this brain only ---
        self.rng: np.random.Generator = np.random.default_rng(self.config.seed)

        # --- Event handlers ---
        self._event_handlers: Dict[str, List[Callable]] = {}

        # --- Counters ---
        self._fired_last_step: List[str] = []
        self._neurons_grown = 0
        self._synapses_rewired = 0

        # --- Clock ---
        self.timestep: int = 0

    def __repr__(self) -> str:
        return (
            f"Brain(step={self.timestep}, neurons={len(self.neurons)}, "
            f"synapses={len(self.synapses)}, pending={self.pending_count()})"
        )

    # -----------------------------------------------------------------------
    # Identifiers and random draws
    # -----------------------------------------------------------------------

    def new_uid(self) -> str:
        """Draw a UUID4 string from the brain's RNG (reproducible under a seed)."""
        return str(uuid.UUID(bytes=self.rng.bytes(16), version=4))

    def draw_receptors(self) -> int:
        fixed = self.config.synapse_new_connection_receptors
        if fixed is not None:
            return int(fixed)
        lo, hi = self.config.default_receptors
        return int(self.rng.integers(lo, hi + 1))

    def compute_delay(self, distance: float) -> int:
        """Whole steps needed to travel ``distance``; never less than 1."""
        return max(1, int(round(distance / self.config.propagation_speed)))

    # -----------------------------------------------------------------------
    # Topology Management
    # -----------------------------------------------------------------------

    def create_neuron(
        self,
        position: Position,
        role: NeuronRole = NeuronRole.INTERNAL,
        neuron_id: Optional[str] = None,
        potential: float = 0.0,
        decay: Optional[float] = None,
    ) -> Neuron:
        """Register a neuron.

        Args:
            position: Location; must be finite.
            role: Fixed role of the neuron.
            neuron_id: Explicit id (drawn from the RNG if None).
            potential: Initial potential.
            decay: Per-step retention (config ``neuron_potential_decay`` if None).

        Returns:
            The created Neuron.
        """
        if not position.is_finite():
            raise ValueError(f"Neuron position must be finite: {position}")
        nid = neuron_id or self.new_uid()
        if nid in self.neurons:
            raise ValueError(f"Neuron {nid} already exists")
        d = self.config.neuron_potential_decay if decay is None else decay
        if not 0.0 < d <= 1.0:
            raise ValueError(f"Neuron decay must lie in (0, 1], got {d}")
        neuron = Neuron(
            neuron_id=nid,
            position=position,
            potential=float(potential),
            decay=float(d),
            role=role,
        )
        self.neurons[nid] = neuron
        self._outgoing[nid] = []
        self._incoming[nid] = []
        self._role_index[role].append(nid)
        return neuron

    def remove_neuron(self, neuron_id: str) -> None:
        """Remove a neuron with its synapses and pending arrivals."""
        neuron = self.neurons.get(neuron_id)
        if neuron is None:
            raise NotFoundError(f"Neuron {neuron_id} not found")

        syn_ids = list(self._outgoing[neuron_id]) + list(self._incoming[neuron_id])
        for sid in syn_ids:
            self._remove_synapse_internal(sid)

        for due, arrivals in list(self._delay_buffer.items()):
            kept = [a for a in arrivals if a.target_id != neuron_id]
            if kept:
                self._delay_buffer[due] = kept
            else:
                del self._delay_buffer[due]

        self._role_index[neuron.role].remove(neuron_id)
        del self._outgoing[neuron_id]
        del self._incoming[neuron_id]
        del self.neurons[neuron_id]

    def create_synapse(
        self,
        source_id: str,
        target_id: str,
        receptors: Optional[int] = None,
        synapse_id: Optional[str] = None,
    ) -> Optional[Synapse]:
        """Create a directed synapse.

        Args:
            source_id: Firing neuron (must not be an Effector).
            target_id: Receiving neuron (must not be a Sensor).
            receptors: Transmission strength (drawn per config if None).
            synapse_id: Explicit id (drawn from the RNG if None).

        Returns:
            The created Synapse, or None if the pair is already connected
            (or the reverse pair is, under ``no_loop_connections``).
        """
        source = self.neurons.get(source_id)
        if source is None:
            raise NotFoundError(f"Source neuron {source_id} not found")
        target = self.neurons.get(target_id)
        if target is None:
            raise NotFoundError(f"Target neuron {target_id} not found")
        self._check_endpoints(source, target)
        if not self._pair_available(source_id, target_id):
            return None

        rec = self.draw_receptors() if receptors is None else receptors
        if rec < 0:
            raise ValueError(f"Receptor count must be non-negative, got {rec}")
        sid = synapse_id or self.new_uid()
        if sid in self.synapses:
            raise ValueError(f"Synapse {sid} already exists")
        distance = source.position.distance(target.position)
        syn = Synapse(
            synapse_id=sid,
            source_id=source_id,
            target_id=target_id,
            receptors=int(rec),
            decay=self.config.synapse_propagation_decay,
            distance=distance,
            delay=self.compute_delay(distance),
        )
        self._register_synapse(syn)
        return syn

    def _check_endpoints(self, source: Neuron, target: Neuron) -> None:
        if source.neuron_id == target.neuron_id:
            raise ValueError("Self-connections not allowed")
        if source.role is NeuronRole.EFFECTOR:
            raise ValueError(f"Effector {source.neuron_id} cannot be a synapse source")
        if target.role is NeuronRole.SENSOR:
            raise ValueError(f"Sensor {target.neuron_id} cannot be a synapse target")

    def _pair_available(self, source_id: str, target_id: str) -> bool:
        if (source_id, target_id) in self._pairs:
            return False
        if self.config.no_loop_connections and (target_id, source_id) in self._pairs:
            return False
        return True

    def _register_synapse(self, syn: Synapse) -> None:
        self.synapses[syn.synapse_id] = syn
        self._outgoing[syn.source_id].append(syn.synapse_id)
        self._incoming[syn.target_id].append(syn.synapse_id)
        self._pairs.add((syn.source_id, syn.target_id))

    def _remove_synapse_internal(self, synapse_id: str) -> None:
        """Remove a synapse and clean up indices (no error on missing)."""
        syn = self.synapses.pop(synapse_id, None)
        if syn is None:
            return
        self._outgoing[syn.source_id].remove(synapse_id)
        self._incoming[syn.target_id].remove(synapse_id)
        self._pairs.discard((syn.source_id, syn.target_id))
        # Impulses already in flight still arrive, detached from the synapse
        for arrivals in self._delay_buffer.values():
            for a in arrivals:
                if a.synapse_id == synapse_id:
                    a.synapse_id = None

    def remove_synapse(self, synapse_id: str) -> None:
        if synapse_id not in self.synapses:
            raise NotFoundError(f"Synapse {synapse_id} not found")
        self._remove_synapse_internal(synapse_id)

    def rewire_synapse(self, synapse_id: str, new_target_id: str) -> Synapse:
        """Redirect a synapse to a new target, keeping its identity,
        receptors and decay.  Distance and delay are recomputed."""
        syn = self.synapses.get(synapse_id)
        if syn is None:
            raise NotFoundError(f"Synapse {synapse_id} not found")
        target = self.neurons.get(new_target_id)
        if target is None:
            raise NotFoundError(f"Target neuron {new_target_id} not found")
        if new_target_id == syn.target_id:
            return syn
        source = self.neurons[syn.source_id]
        self._check_endpoints(source, target)
        if not self._pair_available(syn.source_id, new_target_id):
            raise ValueError(
                f"Neurons {syn.source_id} and {new_target_id} are already connected"
            )

        self._incoming[syn.target_id].remove(synapse_id)
        self._pairs.discard((syn.source_id, syn.target_id))
        syn.target_id = new_target_id
        syn.distance = source.position.distance(target.position)
        syn.delay = self.compute_delay(syn.distance)
        self._incoming[new_target_id].append(synapse_id)
        self._pairs.add((syn.source_id, new_target_id))
        return syn

    def are_connected(self, source_id: str, target_id: str) -> bool:
        return (source_id, target_id) in self._pairs

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def neuron(self, neuron_id: str) -> Neuron:
        neuron = self.neurons.get(neuron_id)
        if neuron is None:
            raise NotFoundError(f"Neuron {neuron_id} not found")
        return neuron

    def get_sensors(self) -> List[str]:
        """Ids of all Sensor neurons, in creation order."""
        return list(self._role_index[NeuronRole.SENSOR])

    def get_effectors(self) -> List[str]:
        """Ids of all Effector neurons, in creation order."""
        return list(self._role_index[NeuronRole.EFFECTOR])

    def synapse_count(self) -> int:
        return len(self.synapses)

    def outgoing(self, neuron_id: str) -> List[Synapse]:
        self.neuron(neuron_id)
        return [self.synapses[sid] for sid in self._outgoing[neuron_id]]

    def incoming(self, neuron_id: str) -> List[Synapse]:
        self.neuron(neuron_id)
        return [self.synapses[sid] for sid in self._incoming[neuron_id]]

    def pending_arrivals(self) -> List[Arrival]:
        """All scheduled arrivals in delivery order."""
        return [a for due in sorted(self._delay_buffer) for a in self._delay_buffer[due]]

    def pending_count(self) -> int:
        return sum(len(arrivals) for arrivals in self._delay_buffer.values())

    def clear_pending(self) -> None:
        """Drop every in-flight arrival."""
        self._delay_buffer.clear()

    # -----------------------------------------------------------------------
    # Stimulus / Readout
    # -----------------------------------------------------------------------

    def trigger_impulse(self, sensor_id: str, amount: float) -> None:
        """Add ``amount`` directly to a Sensor's potential (no synapse delay).

        Raises:
            NotFoundError: ``sensor_id`` is not a live Sensor.
            ValueError: ``amount`` is not finite.
            SimulationError: The result would exceed ``max_potential``; the
                sensor is left unchanged.
        """
        neuron = self.neurons.get(sensor_id)
        if neuron is None or neuron.role is not NeuronRole.SENSOR:
            raise NotFoundError(f"Sensor {sensor_id} not found")
        if not math.isfinite(amount):
            raise ValueError(f"Impulse amount must be finite, got {amount}")
        new_potential = neuron.potential + amount
        self._check_potential(new_potential, f"sensor {sensor_id}")
        neuron.potential = new_potential

    def effector_potential_release(self, effector_id: str) -> Tuple[bool, float]:
        """Drain an Effector: return its potential and reset it to 0.

        Returns:
            ``(True, potential)`` for a live Effector, ``(False, 0.0)`` if the
            id is unknown or not an Effector.
        """
        neuron = self.neurons.get(effector_id)
        if neuron is None or neuron.role is not NeuronRole.EFFECTOR:
            return False, 0.0
        potential = neuron.potential
        neuron.potential = 0.0
        return True, potential

    def schedule_arrival(
        self,
        target_id: str,
        potential: float,
        delay: int = 0,
        synapse_id: Optional[str] = None,
    ) -> Arrival:
        """Queue ``potential`` for ``target_id`` at ``timestep + delay``.

        A zero delay is delivered at the start of the next tick.
        """
        if target_id not in self.neurons:
            raise NotFoundError(f"Neuron {target_id} not found")
        if delay < 0:
            raise ValueError(f"Arrival delay must be non-negative, got {delay}")
        arrival = Arrival(
            due_step=self.timestep + delay,
            target_id=target_id,
            potential=float(potential),
            synapse_id=synapse_id,
            scheduled_step=self.timestep,
        )
        self._check_potential(arrival.potential, f"arrival for {target_id}")
        self._delay_buffer.setdefault(arrival.due_step, []).append(arrival)
        return arrival

    # -----------------------------------------------------------------------
    # Simulation Loop
    # -----------------------------------------------------------------------

    def process(self, steps: int = 1) -> List[StepResult]:
        """Advance ``steps`` ticks atomically.

        Pipeline per tick:
            1. Deliver arrivals due at the current step
            2. Decay every potential
            3. Fire: each non-Effector above threshold sends
               potential x transmission factor x synapse decay along every
               outgoing synapse, due after the synapse delay, and is reset
            4. Automatic neurogenesis / reconnection on their cadence
            5. Runaway guard
            6. Advance the step counter

        Raises:
            ValueError: ``steps`` is negative.
            SimulationError: A potential became non-finite or exceeded
                ``max_potential``.  The brain is restored to its state
                before the call.
        """
        if steps < 0:
            raise ValueError(f"steps must be non-negative, got {steps}")
        if steps == 0:
            return []

        results: List[StepResult] = []
        with self.atomic():
            for _ in range(steps):
                results.append(self._tick())

        for result in results:
            self._emit("step", result=result)
        return results

    def _tick(self) -> StepResult:
        t = self.timestep
        result = StepResult(step=t)

        # 1. Deliver arrivals due now, in scheduling order
        arrivals = self._delay_buffer.pop(t, [])
        for arrival in arrivals:
            target = self.neurons.get(arrival.target_id)
            if target is not None:
                target.potential += arrival.potential
        result.arrivals_delivered = len(arrivals)

        # 2. Decay
        for neuron in self.neurons.values():
            neuron.potential *= neuron.decay

        # 3. Fire
        threshold = self.config.firing_threshold
        fired_ids = [
            nid
            for nid, neuron in self.neurons.items()
            if neuron.role is not NeuronRole.EFFECTOR and neuron.potential > threshold
        ]
        for nid in fired_ids:
            neuron = self.neurons[nid]
            potential = neuron.potential
            neuron.potential = 0.0
            for sid in self._outgoing[nid]:
                syn = self.synapses[sid]
                amount = potential * syn.transmission_factor * syn.decay
                if amount == 0.0:
                    continue
                self.schedule_arrival(syn.target_id, amount, delay=syn.delay, synapse_id=sid)
        result.fired_neuron_ids = fired_ids

        # 4. Structural events between this tick and the next
        grown, rewired = self._structural_events(t + 1)
        result.neurons_grown = grown
        result.synapses_rewired = rewired

        # 5. Runaway guard
        for nid, neuron in self.neurons.items():
            self._check_potential(neuron.potential, f"neuron {nid}")

        # 6. Clock
        self._fired_last_step = fired_ids
        self.timestep = t + 1
        return result

    def _structural_events(self, next_step: int) -> Tuple[int, int]:
        cfg = self.config
        grown = 0
        rewired = 0
        if cfg.neurogenesis_interval and next_step % cfg.neurogenesis_interval == 0:
            from tissue_builder import grow_neurons

            grown = len(
                grow_neurons(self, cfg.neurogenesis_neurons, cfg.neurogenesis_connections)
            )
        if (
            cfg.reconnection_interval
            and cfg.synapse_reconnection_range is not None
            and next_step % cfg.reconnection_interval == 0
        ):
            from tissue_builder import rewire_synapses

            rewired = rewire_synapses(self, min(cfg.reconnection_count, len(self.synapses)))
        return grown, rewired

    def _check_potential(self, value: float, where: str) -> None:
        if not math.isfinite(value) or abs(value) > self.config.max_potential:
            raise SimulationError(
                f"Runaway potential {value!r} at {where} (step {self.timestep})"
            )

    # -----------------------------------------------------------------------
    # Atomicity
    # -----------------------------------------------------------------------

    def _snapshot(self) -> Dict[str, Any]:
        state = {name: copy.deepcopy(getattr(self, name)) for name in _STATE_ATTRS}
        state["rng"] = copy.deepcopy(self.rng.bit_generator.state)
        return state

    def _restore_snapshot(self, state: Dict[str, Any]) -> None:
        for name in _STATE_ATTRS:
            setattr(self, name, state[name])
        self.rng.bit_generator.state = state["rng"]

    @contextmanager
    def atomic(self) -> Iterator["Brain"]:
        """Roll the brain back to its state at entry if the block raises."""
        snapshot = self._snapshot()
        try:
            yield self
        except BaseException:
            self._restore_snapshot(snapshot)
            logger.debug("Rolled brain back to step %d", self.timestep)
            raise

    # -----------------------------------------------------------------------
    # Statistics
    # -----------------------------------------------------------------------

    def activity_stats(self) -> BrainActivityStats:
        """Aggregate counts and sums over neurons, synapses and pending arrivals."""
        potentials = np.fromiter(
            (n.potential for n in self.neurons.values()), dtype=float, count=len(self.neurons)
        )
        receptors = np.fromiter(
            (s.receptors for s in self.synapses.values()), dtype=float, count=len(self.synapses)
        )
        pending = [a.potential for arrivals in self._delay_buffer.values() for a in arrivals]
        return BrainActivityStats(
            step=self.timestep,
            neurons=len(self.neurons),
            synapses=len(self.synapses),
            sensors=len(self._role_index[NeuronRole.SENSOR]),
            effectors=len(self._role_index[NeuronRole.EFFECTOR]),
            active_neurons=int(np.count_nonzero(potentials > self.config.firing_threshold)),
            fired_last_step=len(self._fired_last_step),
            total_potential=float(potentials.sum()) if potentials.size else 0.0,
            mean_potential=float(potentials.mean()) if potentials.size else 0.0,
            max_potential=float(potentials.max()) if potentials.size else 0.0,
            pending_arrivals=len(pending),
            pending_potential=float(np.sum(pending)) if pending else 0.0,
            mean_receptors=float(receptors.mean()) if receptors.size else 0.0,
            neurons_grown=self._neurons_grown,
            synapses_rewired=self._synapses_rewired,
        )

    def activity_map(self) -> BrainActivityMap:
        """Positions of connections, in-flight impulses, sensors and effectors."""
        connections = [
            (self.neurons[s.source_id].position, self.neurons[s.target_id].position)
            for s in self.synapses.values()
        ]
        impulses = []
        for arrival in self.pending_arrivals():
            syn = self.synapses.get(arrival.synapse_id) if arrival.synapse_id else None
            if syn is None:
                continue
            span = arrival.due_step - arrival.scheduled_step
            progress = 1.0 if span <= 0 else (self.timestep - arrival.scheduled_step) / span
            impulses.append((
                self.neurons[syn.source_id].position,
                self.neurons[syn.target_id].position,
                min(max(progress, 0.0), 1.0),
            ))
        return BrainActivityMap(
            connections=connections,
            impulses=impulses,
            sensors=[self.neurons[nid].position for nid in self._role_index[NeuronRole.SENSOR]],
            effectors=[self.neurons[nid].position for nid in self._role_index[NeuronRole.EFFECTOR]],
        )

    # -----------------------------------------------------------------------
    # Event System
    # -----------------------------------------------------------------------

    def register_event_handler(self, event_type: str, callback: Callable) -> None:
        """Subscribe to events: step, grew, rewired, ignited."""
        self._event_handlers.setdefault(event_type, []).append(callback)

    def unregister_event_handler(self, event_type: str, callback: Callable) -> None:
        handlers = self._event_handlers.get(event_type, [])
        if callback in handlers:
            handlers.remove(callback)

    def _emit(self, event_type: str, **kwargs: Any) -> None:
        for cb in self._event_handlers.get(event_type, []):
            cb(**kwargs)

    # -----------------------------------------------------------------------
    # Persistence
    # -----------------------------------------------------------------------

    def checkpoint(self, path: str) -> None:
        """Save state; the extension picks the format (.yaml/.yml, .msgpack, else JSON)."""
        from tissue_serde import save_brain

        save_brain(self, path)

    @classmethod
    def restore(cls, path: str, strict: bool = True) -> "Brain":
        """Load a brand-new brain from a checkpoint written by ``checkpoint``."""
        from tissue_serde import load_brain

        return load_brain(path, strict=strict)
