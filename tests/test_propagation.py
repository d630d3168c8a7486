"""Tests for the propagation engine: delivery, decay, firing, atomic ticks.

Also covers the engine-level properties: zero-step no-op, step additivity,
minimum delay, and the bounded response of the reference scenario.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tissue_builder import build_brain, ignite_random_synapses
from tissue_config import BrainBuilderConfig
from tissue_errors import SimulationError
from tissue_foundation import Brain, NeuronRole, Position
from tissue_serde import serialize_yaml


def _chain(a_x=1.0, **overrides):
    """Sensor s -> internal a -> effector e along the x axis."""
    brain = Brain(BrainBuilderConfig(seed=5, **overrides))
    brain.create_neuron(Position(0.0, 0.0, 0.0), NeuronRole.SENSOR, neuron_id="s")
    brain.create_neuron(Position(a_x, 0.0, 0.0), NeuronRole.INTERNAL, neuron_id="a")
    brain.create_neuron(Position(a_x + 1.0, 0.0, 0.0), NeuronRole.EFFECTOR, neuron_id="e")
    brain.create_synapse("s", "a", receptors=1)
    brain.create_synapse("a", "e", receptors=1)
    return brain


def _seeded(**overrides):
    cfg = dict(neurons=60, connections=150, sensors=4, effectors=4, seed=21,
               neuron_potential_decay=0.9, synapse_propagation_decay=0.9)
    cfg.update(overrides)
    brain = build_brain(BrainBuilderConfig(**cfg))
    for sid in brain.get_sensors():
        brain.trigger_impulse(sid, 5.0)
    ignite_random_synapses(brain, 10, 0.5, 1.5)
    return brain


class TestSignalFlow:
    def test_chain_transmission(self):
        brain = _chain()
        brain.trigger_impulse("s", 1.0)
        brain.process(2)
        assert brain.effector_potential_release("e") == (True, 0.0)
        brain.process(1)
        # 1.0 x 1/2 x 1/2
        found, potential = brain.effector_potential_release("e")
        assert found
        assert potential == pytest.approx(0.25)

    def test_step_results(self):
        brain = _chain()
        brain.trigger_impulse("s", 1.0)
        results = brain.process(3)
        assert [r.step for r in results] == [0, 1, 2]
        assert results[0].fired_neuron_ids == ["s"]
        assert results[1].arrivals_delivered == 1
        assert results[1].fired_neuron_ids == ["a"]
        assert results[2].fired_neuron_ids == []
        assert brain.timestep == 3

    def test_firing_resets_potential(self):
        brain = _chain()
        brain.trigger_impulse("s", 1.0)
        brain.process(1)
        assert brain.neuron("s").potential == 0.0

    def test_synapse_decay_applied(self):
        brain = _chain(synapse_propagation_decay=0.5)
        brain.trigger_impulse("s", 1.0)
        brain.process(2)
        # a received 1.0 x 1/2 x 0.5 and fired it on
        assert brain.pending_arrivals()[0].potential == pytest.approx(0.25 * 0.5 * 0.5)

    def test_neuron_decay(self):
        brain = _chain()
        brain.create_neuron(Position(5.0, 5.0, 0.0), NeuronRole.EFFECTOR,
                            neuron_id="e2", potential=4.0, decay=0.5)
        brain.process(2)
        assert brain.effector_potential_release("e2") == (True, pytest.approx(1.0))

    def test_below_threshold_holds(self):
        brain = _chain(firing_threshold=1.0)
        brain.trigger_impulse("s", 0.5)
        result = brain.process(1)[0]
        assert result.fired_neuron_ids == []
        assert brain.neuron("s").potential == pytest.approx(0.5)
        assert brain.pending_count() == 0

    def test_effectors_accumulate(self):
        brain = _chain()
        for _ in range(3):
            brain.trigger_impulse("s", 1.0)
            brain.process(1)
        brain.process(2)
        assert brain.effector_potential_release("e")[1] == pytest.approx(0.75)

    def test_zero_receptors_schedule_nothing(self):
        brain = Brain(BrainBuilderConfig(seed=5))
        brain.create_neuron(Position(), NeuronRole.SENSOR, neuron_id="s")
        brain.create_neuron(Position(1.0, 0.0, 0.0), neuron_id="a")
        brain.create_synapse("s", "a", receptors=0)
        brain.trigger_impulse("s", 1.0)
        brain.process(1)
        assert brain.pending_count() == 0

    def test_delivery_not_before_delay(self):
        brain = _chain(a_x=3.0)
        syn = brain.outgoing("s")[0]
        assert syn.delay == 3
        brain.trigger_impulse("s", 1.0)
        results = brain.process(syn.delay)
        assert all(r.arrivals_delivered == 0 for r in results)
        assert brain.process(1)[0].arrivals_delivered == 1


class TestProcessContract:
    def test_negative_steps(self):
        with pytest.raises(ValueError):
            _chain().process(-1)

    def test_zero_steps_is_noop(self):
        brain = _seeded()
        before_text = serialize_yaml(brain)
        before_stats = brain.activity_stats()
        assert brain.process(0) == []
        assert serialize_yaml(brain) == before_text
        assert brain.activity_stats() == before_stats

    @pytest.mark.parametrize("a,b", [(0, 7), (3, 4), (7, 0), (1, 1)])
    def test_step_additivity(self, a, b):
        split = _seeded(neurogenesis_interval=2, reconnection_interval=3,
                        synapse_reconnection_range=4.0)
        whole = _seeded(neurogenesis_interval=2, reconnection_interval=3,
                        synapse_reconnection_range=4.0)
        split.process(a)
        split.process(b)
        whole.process(a + b)
        assert serialize_yaml(split) == serialize_yaml(whole)

    def test_step_events(self):
        brain = _chain()
        seen = []
        brain.register_event_handler("step", lambda result: seen.append(result.step))
        brain.process(3)
        assert seen == [0, 1, 2]


class TestRunawayGuard:
    def test_runaway_raises_and_rolls_back(self):
        brain = _chain(max_potential=100.0)
        brain.neuron("e").potential = 50.0
        brain.schedule_arrival("e", 60.0)
        with pytest.raises(SimulationError):
            brain.process(1)
        assert brain.timestep == 0
        assert brain.neuron("e").potential == 50.0
        assert brain.pending_count() == 1

    def test_multi_step_call_is_atomic(self):
        brain = _chain(max_potential=100.0)
        brain.trigger_impulse("s", 1.0)
        brain.neuron("e").potential = 50.0
        brain.schedule_arrival("e", 60.0, delay=2)
        before = serialize_yaml(brain)
        with pytest.raises(SimulationError):
            brain.process(5)
        assert serialize_yaml(brain) == before

    def test_no_step_events_after_failure(self):
        brain = _chain(max_potential=100.0)
        seen = []
        brain.register_event_handler("step", lambda result: seen.append(result.step))
        brain.neuron("e").potential = 50.0
        brain.schedule_arrival("e", 60.0)
        with pytest.raises(SimulationError):
            brain.process(2)
        assert seen == []

    def test_simulation_error_is_arithmetic_error(self):
        assert issubclass(SimulationError, ArithmeticError)


class TestReferenceScenario:
    def test_effectors_bounded_after_one_step(self):
        brain = build_brain(BrainBuilderConfig(
            neurons=600, connections=1000, sensors=50, effectors=25,
            propagation_speed=50.0, neuron_potential_decay=0.1,
            synapse_propagation_decay=0.01, seed=42,
        ))
        for sid in brain.get_sensors():
            brain.trigger_impulse(sid, 10.0)
        brain.process(1)
        for eid in brain.get_effectors():
            found, potential = brain.effector_potential_release(eid)
            assert found
            assert abs(potential) <= 10.0 * 0.1
        brain.process(20)
        for eid in brain.get_effectors():
            assert abs(brain.effector_potential_release(eid)[1]) <= 10.0 * 0.1
