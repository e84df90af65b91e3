from datetime import timedelta

import pytest

import config
import lifestream
from config import load_config
from lifestream.errors import ConfigError
from lifestream.options import SOURCE_DEFAULTS, SourceOptions


def test_defaults_fill_everything():
    options = SourceOptions.from_config({})
    assert options.base_interval == timedelta(seconds=SOURCE_DEFAULTS["base_interval"])
    assert options.max_retries == 3
    assert options.outlier_factor == 2.0
    assert not options.catchup_enabled
    assert options.stop_timeout == timedelta(seconds=1)


def test_precedence_entry_over_type_over_global():
    options = SourceOptions.from_config(
        {"base_interval": 120, "max_retries": "5"},
        {"base_interval": 360, "retry_interval": 20},
    )
    assert options.base_interval == timedelta(seconds=120)
    assert options.retry_interval == timedelta(seconds=20)
    assert options.max_retries == 5


def test_null_values_fall_back():
    options = SourceOptions.from_config({"base_interval": None}, {"base_interval": 360})
    assert options.base_interval == timedelta(seconds=360)


def test_unrelated_keys_are_ignored():
    options = SourceOptions.from_config({"id": "x", "type": "rest", "url": "http://example"})
    assert options.minimum_interval == timedelta(seconds=SOURCE_DEFAULTS["minimum_interval"])


def test_catch_up_options():
    options = SourceOptions.from_config(
        {"catchup_window": 3600, "catchup_cadence": 360, "catchup_delay": 1.5}
    )
    assert options.catchup_enabled
    assert options.catchup_window == timedelta(hours=1)
    assert options.catchup_delay == timedelta(seconds=1.5)


@pytest.mark.parametrize("entry", [
    {"base_interval": "soon"},
    {"minimum_interval": -5},
    {"minimum_interval": 0},
    {"minimum_interval": 120, "maximum_interval": 60},
    {"max_retries": "many"},
    {"max_observations": 0},
    {"outlier_factor": 0.5},
    {"catchup_window": 3600},
    {"catchup_window": 3600, "catchup_cadence": 360, "catchup_attempt_cap": 0},
])
def test_invalid_values_raise_config_error(entry):
    with pytest.raises(ConfigError):
        SourceOptions.from_config(entry)


def test_load_config(tmp_path):
    path = tmp_path / "dashboard.yaml"
    path.write_text("sources:\n  - id: a\n    type: demo\n")
    assert load_config(str(path)) == {"sources": [{"id": "a", "type": "demo"}]}


def test_load_config_missing_file_is_empty(tmp_path):
    assert load_config(str(tmp_path / "nope.yaml")) == {}


@pytest.mark.parametrize("text", ["sources: [unclosed", "- just\n- a list\n"])
def test_load_config_rejects_bad_yaml(tmp_path, text):
    path = tmp_path / "dashboard.yaml"
    path.write_text(text)
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_load_config_errors_are_the_package_config_error(tmp_path):
    assert config.ConfigError is lifestream.ConfigError
    path = tmp_path / "dashboard.yaml"
    path.write_text("sources: [unclosed")
    with pytest.raises(lifestream.ConfigError):
        config.load_config(str(path))
