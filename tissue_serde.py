"""
Brain persistence - lossless YAML, JSON and msgpack encodings.

A brain document holds the config, the step counter, the RNG state,
every neuron and synapse in insertion order and every pending arrival in
delivery order.  Decoding a document yields a brand-new brain whose future
``process`` calls behave exactly like those of the brain it was taken from.

Strictness:
    strict=True   unknown keys, missing or mistyped fields, dangling
                  references and invalid config all raise ``ParseError``.
    strict=False  unknown keys are ignored, missing or malformed optional
                  fields are defaulted, dangling records are dropped; each
                  repair is logged as a warning.  Syntax errors and a
                  non-mapping document still raise ``ParseError``.

Usage::

    from tissue_serde import serialize_yaml, deserialize_yaml
    text = serialize_yaml(brain)
    clone = deserialize_yaml(text, strict=True)
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import msgpack
import yaml

from tissue_config import BrainBuilderConfig
from tissue_errors import ConfigError, ParseError
from tissue_foundation import Arrival, Brain, NeuronRole, Position, Synapse

logger = logging.getLogger("neurotissue.serde")

FORMAT_VERSION = 1

_TOP_KEYS = ("format_version", "config", "step", "rng", "counters", "neurons", "synapses", "pending")
_NEURON_KEYS = ("id", "position", "potential", "decay", "role")
_SYNAPSE_KEYS = ("id", "source", "target", "receptors", "decay", "distance", "delay")
_ARRIVAL_KEYS = ("due", "target", "potential", "synapse", "scheduled")
_COUNTER_KEYS = ("neurons_grown", "synapses_rewired", "fired_last_step")
_RNG_KEYS = ("bit_generator", "state", "inc", "has_uint32", "uinteger")

_MISSING = object()


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def _serialize_rng(brain: Brain) -> Dict[str, Any]:
    state = brain.rng.bit_generator.state
    # 128-bit integers do not fit msgpack ints
    return {
        "bit_generator": state["bit_generator"],
        "state": hex(state["state"]["state"]),
        "inc": hex(state["state"]["inc"]),
        "has_uint32": int(state["has_uint32"]),
        "uinteger": int(state["uinteger"]),
    }


def _serialize_neuron(neuron) -> Dict[str, Any]:
    return {
        "id": neuron.neuron_id,
        "position": neuron.position.to_list(),
        "potential": neuron.potential,
        "decay": neuron.decay,
        "role": neuron.role.value,
    }


def _serialize_synapse(syn: Synapse) -> Dict[str, Any]:
    return {
        "id": syn.synapse_id,
        "source": syn.source_id,
        "target": syn.target_id,
        "receptors": syn.receptors,
        "decay": syn.decay,
        "distance": syn.distance,
        "delay": syn.delay,
    }


def _serialize_arrival(arrival: Arrival) -> Dict[str, Any]:
    return {
        "due": arrival.due_step,
        "target": arrival.target_id,
        "potential": arrival.potential,
        "synapse": arrival.synapse_id,
        "scheduled": arrival.scheduled_step,
    }


def brain_to_document(brain: Brain) -> Dict[str, Any]:
    """Plain-data representation of the complete brain state."""
    return {
        "format_version": FORMAT_VERSION,
        "config": brain.config.to_dict(),
        "step": brain.timestep,
        "rng": _serialize_rng(brain),
        "counters": {
            "neurons_grown": brain._neurons_grown,
            "synapses_rewired": brain._synapses_rewired,
            "fired_last_step": list(brain._fired_last_step),
        },
        "neurons": [_serialize_neuron(n) for n in brain.neurons.values()],
        "synapses": [_serialize_synapse(s) for s in brain.synapses.values()],
        "pending": [_serialize_arrival(a) for a in brain.pending_arrivals()],
    }


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

class _Reader:
    """Field access that either fails hard or repairs with a warning."""

    def __init__(self, strict: bool):
        self.strict = strict
        self.repairs = 0

    def problem(self, message: str) -> None:
        if self.strict:
            raise ParseError(message)
        self.repairs += 1
        logger.warning("Repairing brain document: %s", message)

    def check_keys(self, mapping: Dict[str, Any], allowed: Tuple[str, ...], where: str) -> None:
        for key in mapping:
            if key not in allowed:
                self.problem(f"unknown key {key!r} in {where}")

    def mapping(self, value: Any, where: str) -> Optional[Dict[str, Any]]:
        if isinstance(value, dict):
            return value
        self.problem(f"{where} must be a mapping, got {type(value).__name__}")
        return None

    def field(self, mapping: Dict[str, Any], key: str, kind: str, where: str, default: Any = _MISSING) -> Any:
        """Read and type-check one field.

        ``kind`` is one of ``int``, ``float``, ``str``, ``position``, ``str?``.
        Returns ``default`` after a (non-strict) repair; ``_MISSING`` when no
        default exists, which tells the caller to drop the record.
        """
        if key not in mapping:
            self.problem(f"missing {key!r} in {where}")
            return default
        value = mapping[key]
        ok, value = _coerce(value, kind)
        if not ok:
            self.problem(f"malformed {key!r} in {where}: {mapping[key]!r}")
            return default
        return value


def _coerce(value: Any, kind: str) -> Tuple[bool, Any]:
    if kind == "int":
        return (isinstance(value, int) and not isinstance(value, bool)), value
    if kind == "float":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False, value
        value = float(value)
        return math.isfinite(value), value
    if kind == "str":
        return isinstance(value, str) and bool(value), value
    if kind == "str?":
        return value is None or (isinstance(value, str) and bool(value)), value
    if kind == "position":
        if not isinstance(value, (list, tuple)) or len(value) != 3:
            return False, value
        ok = all(_coerce(v, "float")[0] for v in value)
        return ok, (Position.from_list(value) if ok else value)
    raise ValueError(f"unknown field kind {kind}")


def _read_config(reader: _Reader, data: Dict[str, Any]) -> BrainBuilderConfig:
    raw = data.get("config", _MISSING)
    if raw is _MISSING:
        reader.problem("missing 'config'")
        return BrainBuilderConfig()
    try:
        return BrainBuilderConfig.from_dict(raw, strict=reader.strict)
    except ConfigError as exc:
        if reader.strict:
            raise ParseError(f"invalid config: {exc}") from exc
        reader.problem(f"invalid config ({exc}); using defaults")
        return BrainBuilderConfig()


def _read_rng(reader: _Reader, brain: Brain, data: Dict[str, Any]) -> None:
    raw = data.get("rng", _MISSING)
    if raw is _MISSING:
        reader.problem("missing 'rng'; keeping a freshly seeded generator")
        return
    raw = reader.mapping(raw, "rng")
    if raw is None:
        return
    reader.check_keys(raw, _RNG_KEYS, "rng")
    try:
        kind = raw["bit_generator"]
        if kind != brain.rng.bit_generator.state["bit_generator"]:
            raise ValueError(f"unsupported bit generator {kind!r}")
        brain.rng.bit_generator.state = {
            "bit_generator": kind,
            "state": {"state": int(raw["state"], 16), "inc": int(raw["inc"], 16)},
            "has_uint32": int(raw["has_uint32"]),
            "uinteger": int(raw["uinteger"]),
        }
    except (KeyError, TypeError, ValueError) as exc:
        reader.problem(f"malformed rng state ({exc}); keeping a freshly seeded generator")


def _read_neurons(reader: _Reader, brain: Brain, records: List[Any]) -> None:
    default_decay = brain.config.neuron_potential_decay
    for i, raw in enumerate(records):
        where = f"neurons[{i}]"
        rec = reader.mapping(raw, where)
        if rec is None:
            continue
        reader.check_keys(rec, _NEURON_KEYS, where)
        nid = reader.field(rec, "id", "str", where)
        position = reader.field(rec, "position", "position", where)
        if nid is _MISSING or position is _MISSING:
            continue
        if nid in brain.neurons:
            reader.problem(f"duplicate neuron id {nid}")
            continue
        potential = reader.field(rec, "potential", "float", where, 0.0)
        decay = reader.field(rec, "decay", "float", where, default_decay)
        if not 0.0 < decay <= 1.0:
            reader.problem(f"decay {decay} out of (0, 1] in {where}")
            decay = default_decay
        role_name = reader.field(rec, "role", "str", where, NeuronRole.INTERNAL.value)
        try:
            role = NeuronRole(role_name)
        except ValueError:
            reader.problem(f"unknown role {role_name!r} in {where}")
            role = NeuronRole.INTERNAL
        brain.create_neuron(position, role, neuron_id=nid, potential=potential, decay=decay)


def _read_synapses(reader: _Reader, brain: Brain, records: List[Any]) -> None:
    default_decay = brain.config.synapse_propagation_decay
    for i, raw in enumerate(records):
        where = f"synapses[{i}]"
        rec = reader.mapping(raw, where)
        if rec is None:
            continue
        reader.check_keys(rec, _SYNAPSE_KEYS, where)
        sid = reader.field(rec, "id", "str", where)
        source_id = reader.field(rec, "source", "str", where)
        target_id = reader.field(rec, "target", "str", where)
        if _MISSING in (sid, source_id, target_id):
            continue
        if sid in brain.synapses:
            reader.problem(f"duplicate synapse id {sid}")
            continue
        source = brain.neurons.get(source_id)
        target = brain.neurons.get(target_id)
        if source is None or target is None:
            reader.problem(f"{where} references a missing neuron")
            continue
        try:
            brain._check_endpoints(source, target)
        except ValueError as exc:
            reader.problem(f"{where}: {exc}")
            continue
        if (source_id, target_id) in brain._pairs:
            reader.problem(f"{where} duplicates an existing connection")
            continue

        receptors = reader.field(rec, "receptors", "int", where, None)
        if receptors is not None and receptors < 0:
            reader.problem(f"negative receptors in {where}")
            receptors = None
        decay = reader.field(rec, "decay", "float", where, default_decay)
        if not 0.0 < decay <= 1.0:
            reader.problem(f"decay {decay} out of (0, 1] in {where}")
            decay = default_decay
        distance = source.position.distance(target.position)
        stored = reader.field(rec, "distance", "float", where, distance)
        delay = reader.field(rec, "delay", "int", where, None)
        if delay is not None and delay < 1:
            reader.problem(f"delay {delay} below 1 in {where}")
            delay = None
        brain._register_synapse(Synapse(
            synapse_id=sid,
            source_id=source_id,
            target_id=target_id,
            receptors=brain.draw_receptors() if receptors is None else receptors,
            decay=decay,
            distance=stored,
            delay=brain.compute_delay(distance) if delay is None else delay,
        ))


def _read_pending(reader: _Reader, brain: Brain, records: List[Any]) -> None:
    for i, raw in enumerate(records):
        where = f"pending[{i}]"
        rec = reader.mapping(raw, where)
        if rec is None:
            continue
        reader.check_keys(rec, _ARRIVAL_KEYS, where)
        due = reader.field(rec, "due", "int", where)
        target_id = reader.field(rec, "target", "str", where)
        potential = reader.field(rec, "potential", "float", where)
        if _MISSING in (due, target_id, potential):
            continue
        if target_id not in brain.neurons:
            reader.problem(f"{where} targets a missing neuron")
            continue
        if due < brain.timestep:
            reader.problem(f"{where} was due at step {due}, before step {brain.timestep}")
            continue
        synapse_id = reader.field(rec, "synapse", "str?", where, None)
        if synapse_id is not None and synapse_id not in brain.synapses:
            reader.problem(f"{where} references a missing synapse")
            synapse_id = None
        scheduled = reader.field(rec, "scheduled", "int", where, brain.timestep)
        brain._delay_buffer.setdefault(due, []).append(Arrival(
            due_step=due,
            target_id=target_id,
            potential=potential,
            synapse_id=synapse_id,
            scheduled_step=scheduled,
        ))


def _read_list(reader: _Reader, data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key, _MISSING)
    if value is _MISSING:
        reader.problem(f"missing {key!r}")
        return []
    if value is None:
        value = []
    if not isinstance(value, list):
        reader.problem(f"{key!r} must be a list")
        return []
    return value


def brain_from_document(
    data: Any,
    strict: bool = False,
    clear_pending: bool = False,
) -> Brain:
    """Rebuild a brain from ``brain_to_document`` output.

    Args:
        data: Parsed document.
        strict: Fail on any anomaly instead of repairing it.
        clear_pending: Drop in-flight arrivals after loading.

    Raises:
        ParseError: Not a mapping, or any anomaly under ``strict``.
    """
    if not isinstance(data, dict):
        raise ParseError(f"brain document must be a mapping, got {type(data).__name__}")
    reader = _Reader(strict)
    reader.check_keys(data, _TOP_KEYS, "document")

    version = data.get("format_version")
    if version != FORMAT_VERSION:
        reader.problem(f"unsupported format_version {version!r}")

    brain = Brain(_read_config(reader, data))
    _read_rng(reader, brain, data)

    step = reader.field(data, "step", "int", "document", 0)
    if step < 0:
        reader.problem(f"negative step {step}")
        step = 0
    brain.timestep = step

    _read_neurons(reader, brain, _read_list(reader, data, "neurons"))
    _read_synapses(reader, brain, _read_list(reader, data, "synapses"))
    _read_pending(reader, brain, _read_list(reader, data, "pending"))

    counters = data.get("counters", _MISSING)
    if counters is _MISSING:
        reader.problem("missing 'counters'")
    else:
        counters = reader.mapping(counters, "counters")
        if counters is not None:
            reader.check_keys(counters, _COUNTER_KEYS, "counters")
            brain._neurons_grown = reader.field(counters, "neurons_grown", "int", "counters", 0)
            brain._synapses_rewired = reader.field(counters, "synapses_rewired", "int", "counters", 0)
            fired = counters.get("fired_last_step", [])
            if not isinstance(fired, list) or not all(isinstance(f, str) for f in fired):
                reader.problem("malformed 'fired_last_step' in counters")
                fired = []
            brain._fired_last_step = []
            for nid in fired:
                if nid not in brain.neurons:
                    reader.problem(f"fired_last_step references missing neuron {nid}")
                    continue
                brain._fired_last_step.append(nid)

    if clear_pending:
        brain.clear_pending()
    if reader.repairs:
        logger.warning("Loaded brain with %d repairs", reader.repairs)
    return brain


# ---------------------------------------------------------------------------
# Text / bytes codecs
# ---------------------------------------------------------------------------

def serialize_yaml(brain: Brain) -> str:
    """Human-readable YAML encoding of the complete brain."""
    return yaml.safe_dump(brain_to_document(brain), sort_keys=False, default_flow_style=None)


def deserialize_yaml(text: str, strict: bool = False, clear_pending: bool = False) -> Brain:
    """Decode ``serialize_yaml`` output into a new brain."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ParseError(f"invalid YAML: {exc}") from exc
    return brain_from_document(data, strict=strict, clear_pending=clear_pending)


def serialize_json(brain: Brain, pretty: bool = False) -> str:
    return json.dumps(brain_to_document(brain), indent=2 if pretty else None)


def deserialize_json(text: str, strict: bool = False, clear_pending: bool = False) -> Brain:
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise ParseError(f"invalid JSON: {exc}") from exc
    return brain_from_document(data, strict=strict, clear_pending=clear_pending)


def to_msgpack(brain: Brain) -> bytes:
    return msgpack.packb(brain_to_document(brain), use_bin_type=True)


def from_msgpack(payload: bytes, strict: bool = False, clear_pending: bool = False) -> Brain:
    try:
        data = msgpack.unpackb(payload, raw=False)
    except (msgpack.exceptions.UnpackException, ValueError, TypeError) as exc:
        raise ParseError(f"invalid msgpack: {exc}") from exc
    return brain_from_document(data, strict=strict, clear_pending=clear_pending)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def save_brain(brain: Brain, path: str) -> None:
    """Write a checkpoint; the extension picks the codec (.yaml/.yml, .msgpack, else JSON)."""
    suffix = Path(path).suffix
    if suffix == ".msgpack":
        with open(path, "wb") as f:
            f.write(to_msgpack(brain))
    else:
        text = serialize_yaml(brain) if suffix in (".yaml", ".yml") else serialize_json(brain, pretty=True)
        with open(path, "w") as f:
            f.write(text)
    logger.info("Checkpointed brain at step %d to %s", brain.timestep, path)


def load_brain(path: str, strict: bool = True, clear_pending: bool = False) -> Brain:
    """Read a checkpoint written by ``save_brain``."""
    suffix = Path(path).suffix
    if suffix == ".msgpack":
        with open(path, "rb") as f:
            return from_msgpack(f.read(), strict=strict, clear_pending=clear_pending)
    with open(path, "r") as f:
        text = f.read()
    if suffix in (".yaml", ".yml"):
        return deserialize_yaml(text, strict=strict, clear_pending=clear_pending)
    return deserialize_json(text, strict=strict, clear_pending=clear_pending)
