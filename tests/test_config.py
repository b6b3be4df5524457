"""Tests for configuration resolution and validation."""

from __future__ import annotations

import dataclasses

import pytest

from conftest import ROOT, make_config
from gan.config import TrainingConfig, get_default_config
from gan.errors import ConfigurationError
from gan.utils import load_config


class TestDefaults:

    def test_defaults_are_valid(self) -> None:
        config = TrainingConfig.from_dict(get_default_config())
        assert config.learning_rate == 2e-4
        assert config.adam_beta1 == 0.5
        assert config.adam_beta2 == 0.999
        assert config.latent_size == 100
        assert config.image_size == 64
        assert config.num_epochs is None

    def test_config_is_immutable(self, config: TrainingConfig) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.batch_size = 3

    def test_lists_are_frozen_as_tuples(self, tmp_path) -> None:
        config = make_config(tmp_path, generator_dims=[16, 8])
        assert config.generator_dims == (16, 8)

    def test_image_shape(self, config: TrainingConfig) -> None:
        assert config.image_shape == (3, 16, 16)


class TestValidation:

    def test_unknown_key(self) -> None:
        values = get_default_config()
        values['learning_rat'] = 0.1
        with pytest.raises(ConfigurationError, match="learning_rat"):
            TrainingConfig.from_dict(values)

    @pytest.mark.parametrize("field, value", [
        ('batch_size', 0),
        ('dataset_size', -1),
        ('soft_one', 0.0),
        ('soft_one', 1.5),
        ('channels', 2),
        ('dropout', 1.0),
        ('learning_rate', 0.0),
        ('num_epochs', 0),
    ])
    def test_out_of_range(self, tmp_path, field: str, value) -> None:
        with pytest.raises(ConfigurationError):
            make_config(tmp_path, **{field: value})

    def test_image_size_must_match_stages(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="divisible"):
            make_config(tmp_path, image_size=20, generator_dims=(16, 8, 4))

    def test_soft_one_is_a_knob(self, tmp_path) -> None:
        assert make_config(tmp_path, soft_one=0.9).soft_one == 0.9
        assert make_config(tmp_path, soft_one=0.95).soft_one == 0.95


class TestConfigFiles:

    @pytest.mark.parametrize("name", ["default_config_GAN.py", "test_config.py"])
    def test_config_files_resolve(self, name: str) -> None:
        values = load_config(str(ROOT / "configs" / name), get_default_config())
        config = TrainingConfig.from_dict(values)
        assert config.image_size % (2 ** len(config.generator_dims)) == 0

    def test_file_overrides_defaults(self) -> None:
        defaults = get_default_config()
        values = load_config(str(ROOT / "configs" / "test_config.py"), defaults)
        assert values['image_size'] == 16
        assert values['channels'] == 1
        # defaults are left untouched
        assert defaults['image_size'] == 64

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="does not exist"):
            load_config(str(tmp_path / "missing.py"), get_default_config())
