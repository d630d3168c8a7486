"""Tests for BrainBuilderConfig validation and layered loading."""

import json
import os
import sys

import pytest
import yaml

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tissue_config import BrainBuilderConfig, load_brain_config
from tissue_errors import ConfigError, TissueError


class TestConfigDefaults:
    def test_defaults_are_valid(self):
        cfg = BrainBuilderConfig().validate()
        assert cfg.neurons == 100
        assert cfg.connections == 0
        assert cfg.sensors == 1
        assert cfg.effectors == 1
        assert cfg.synapse_reconnection_range is None
        assert cfg.synapse_new_connection_receptors is None
        assert cfg.default_receptors == (1, 3)
        assert cfg.no_loop_connections is True
        assert cfg.neurogenesis_interval == 0

    def test_to_dict_uses_lists(self):
        data = BrainBuilderConfig().to_dict()
        assert data["default_receptors"] == [1, 3]
        assert data["seed"] is None


class TestConfigValidation:
    @pytest.mark.parametrize("overrides", [
        {"neurons": 3, "sensors": 2, "effectors": 2},
        {"radius": 0.0},
        {"propagation_speed": -1.0},
        {"neuron_potential_decay": 0.0},
        {"synapse_propagation_decay": 1.5},
        {"min_neurogenesis_range": 2.0, "max_neurogenesis_range": 1.0},
        {"synapse_reconnection_range": 0.0},
        {"reconnection_interval": 5},
        {"default_receptors": (3, 1)},
        {"synapse_new_connection_receptors": -1},
        {"neurons": -1},
        {"connections": 2.5},
        {"radius": float("inf")},
        {"seed": True},
    ])
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ConfigError):
            BrainBuilderConfig(**overrides).validate()

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            BrainBuilderConfig(radius=-1.0).validate()
        assert issubclass(ConfigError, TissueError)

    def test_counts_may_fill_population(self):
        BrainBuilderConfig(neurons=2, sensors=1, effectors=1).validate()

    def test_reconnection_interval_with_range(self):
        cfg = BrainBuilderConfig(reconnection_interval=5, synapse_reconnection_range=2.0)
        assert cfg.validate() is cfg


class TestConfigFromDict:
    def test_ints_promoted_to_floats(self):
        cfg = BrainBuilderConfig.from_dict({"radius": 5, "synapse_reconnection_range": 2})
        assert isinstance(cfg.radius, float)
        assert cfg.synapse_reconnection_range == 2.0

    def test_receptor_list_becomes_tuple(self):
        cfg = BrainBuilderConfig.from_dict({"default_receptors": [2, 4]})
        assert cfg.default_receptors == (2, 4)

    def test_unknown_key_strict(self):
        with pytest.raises(ConfigError):
            BrainBuilderConfig.from_dict({"neurons": 10, "dendrites": 4})

    def test_unknown_key_lenient(self):
        cfg = BrainBuilderConfig.from_dict({"neurons": 10, "dendrites": 4}, strict=False)
        assert cfg.neurons == 10

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigError):
            BrainBuilderConfig.from_dict([1, 2, 3])


class TestLoadBrainConfig:
    def test_no_arguments_gives_defaults(self):
        assert load_brain_config() == BrainBuilderConfig()

    def test_overrides(self):
        cfg = load_brain_config({"neurons": 600, "connections": 1000, "seed": 7})
        assert cfg.neurons == 600
        assert cfg.connections == 1000
        assert cfg.seed == 7

    def test_load_from_yaml_file(self, tmp_path):
        path = tmp_path / "brain.yaml"
        path.write_text(yaml.safe_dump({"neurons": 50, "radius": 4.0}))
        cfg = load_brain_config(config_path=str(path))
        assert cfg.neurons == 50
        assert cfg.radius == 4.0

    def test_load_from_json_file(self, tmp_path):
        path = tmp_path / "brain.json"
        path.write_text(json.dumps({"sensors": 3, "effectors": 2}))
        cfg = load_brain_config(config_path=str(path))
        assert cfg.sensors == 3
        assert cfg.effectors == 2

    def test_dict_overrides_win_over_file(self, tmp_path):
        path = tmp_path / "brain.yaml"
        path.write_text(yaml.safe_dump({"neurons": 50, "radius": 4.0}))
        cfg = load_brain_config({"neurons": 70}, config_path=str(path))
        assert cfg.neurons == 70
        assert cfg.radius == 4.0

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = load_brain_config(config_path=str(tmp_path / "absent.yaml"))
        assert cfg == BrainBuilderConfig()

    def test_unreadable_file_logs_warning(self, tmp_path, caplog):
        path = tmp_path / "broken.yaml"
        path.write_text("neurons: [unclosed")
        with caplog.at_level("WARNING", logger="neurotissue.config"):
            cfg = load_brain_config(config_path=str(path))
        assert cfg == BrainBuilderConfig()
        assert "Failed to load brain config" in caplog.text

    def test_invalid_merged_config_raises(self):
        with pytest.raises(ConfigError):
            load_brain_config({"neurons": 1, "sensors": 1, "effectors": 1})
