"""Tests for the rotating event log and health context."""

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tissue_builder import build_brain, grow, ignite_random_synapses
from tissue_config import BrainBuilderConfig
from tissue_monitoring import TissueEventLogger, health_context


@pytest.fixture
def brain():
    return build_brain(BrainBuilderConfig(neurons=20, connections=30, seed=6))


@pytest.fixture
def events(tmp_path):
    log = TissueEventLogger(str(tmp_path / "logs"))
    yield log
    log.close()


def _read_events(log):
    with open(log.log_path) as f:
        return [json.loads(line) for line in f if line.strip()]


class TestHealthContext:
    def test_summary(self, brain):
        text = health_context(brain)
        assert text.startswith("Brain: 20 neurons")
        assert "30 synapses" in text
        assert "step 0" in text
        assert "pending" not in text

    def test_pending_mentioned(self, brain):
        ignite_random_synapses(brain, 3, 1.0, 1.0)
        assert "3 pending" in health_context(brain)


class TestTissueEventLogger:
    def test_log_file_created(self, events):
        assert events.log_path.parent.is_dir()
        assert events.log_path.name == "tissue.log"

    def test_log_event(self, events):
        events.log_event("custom", {"value": 1})
        (record,) = _read_events(events)
        assert record["event"] == "custom"
        assert record["data"] == {"value": 1}
        assert record["step"] is None
        assert "timestamp" in record

    def test_step_events(self, brain, events):
        events.attach(brain)
        brain.process(2)
        records = _read_events(events)
        assert [r["event"] for r in records] == ["step", "step"]
        assert [r["step"] for r in records] == [0, 1]
        assert set(records[0]["data"]) == {"fired", "delivered", "grown", "rewired", "pending"}

    def test_mutation_events(self, brain, events):
        events.attach(brain)
        brain.process(3)
        new_ids = grow(brain, neurons=2)
        ignite_random_synapses(brain, 2, 1.0, 2.0)
        records = [r for r in _read_events(events) if r["event"] != "step"]
        assert [r["event"] for r in records] == ["grew", "ignited"]
        assert records[0]["data"]["neuron_ids"] == new_ids
        assert records[0]["data"]["neurons"] == 22
        assert records[0]["step"] == 3
        assert records[1]["data"]["count"] == 2
        assert records[1]["data"]["synapses"] == brain.synapse_count()

    def test_close_detaches(self, brain, tmp_path):
        log = TissueEventLogger(str(tmp_path))
        log.attach(brain)
        log.close()
        brain.process(1)
        assert _read_events(log) == []
        for event_type in ("step", "grew", "rewired", "ignited"):
            assert brain._event_handlers.get(event_type, []) == []

    def test_close_keeps_other_handlers(self, brain, tmp_path):
        seen = []
        brain.register_event_handler("step", lambda **kw: seen.append(kw["result"].step))
        log = TissueEventLogger(str(tmp_path))
        log.attach(brain)
        log.close()
        brain.process(2)
        assert seen == [0, 1]
