import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from timelapse_stream.config import (  # noqa: E402
    DEFAULT_CRON_SPEC,
    ConfigError,
    load_capture_groups,
    load_settings,
    parse_capture_groups,
)


def write_config(tmp_path: Path, data) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_capture_groups_preserves_order_and_fields(tmp_path):
    path = write_config(
        tmp_path,
        [
            {"name": "yard", "title": "Back Yard", "pattern": "./frames/yard/*.jpg", "fps": [10, 30], "savePath": "./out"},
            {"name": "garden", "pattern": "./frames/garden/*.jpg", "fps": 5, "savePath": "./out"},
        ],
    )

    groups = load_capture_groups(path)

    assert [group.name for group in groups] == ["yard", "garden"]
    yard, garden = groups
    assert yard.title == "Back Yard"
    assert yard.frame_rates == (10, 30)
    assert yard.save_path == Path("./out")
    assert garden.title == "garden"
    assert garden.frame_rates == (5,)


def test_frame_rates_alias_and_duplicate_rates_collapse():
    groups = parse_capture_groups(
        {"captureGroups": [{"name": "cam", "pattern": "*.png", "frameRates": [24, "24", 12], "savePath": "out"}]}
    )
    assert groups[0].frame_rates == (24, 12)


def test_whole_number_float_frame_rate_is_accepted():
    groups = parse_capture_groups([{"name": "cam", "pattern": "*.png", "fps": [30.0], "savePath": "out"}])
    assert groups[0].frame_rates == (30,)


@pytest.mark.parametrize(
    "entry",
    [
        {"pattern": "*.jpg", "fps": [10], "savePath": "out"},
        {"name": "cam", "fps": [10], "savePath": "out"},
        {"name": "cam", "pattern": "*.jpg", "savePath": "out"},
        {"name": "cam", "pattern": "*.jpg", "fps": [0], "savePath": "out"},
        {"name": "cam", "pattern": "*.jpg", "fps": ["fast"], "savePath": "out"},
        {"name": "cam", "pattern": "*.jpg", "fps": [10.5], "savePath": "out"},
        {"name": "cam", "pattern": "*.jpg", "fps": 29.97, "savePath": "out"},
        {"name": "cam", "pattern": "*.jpg", "fps": ["10.5"], "savePath": "out"},
        {"name": "cam", "pattern": "*.jpg", "fps": [10]},
        {"name": "../cam", "pattern": "*.jpg", "fps": [10], "savePath": "out"},
    ],
)
def test_invalid_capture_group_is_rejected(entry):
    with pytest.raises(ConfigError):
        parse_capture_groups([entry])


def test_duplicate_group_names_are_rejected():
    entry = {"name": "cam", "pattern": "*.jpg", "fps": [10], "savePath": "out"}
    with pytest.raises(ConfigError, match="Duplicate"):
        parse_capture_groups([entry, dict(entry, savePath="other")])


def test_missing_config_file_is_a_config_error(tmp_path):
    with pytest.raises(ConfigError, match="Failed to read"):
        load_capture_groups(tmp_path / "missing.json")


def test_unparseable_config_file_is_a_config_error(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError, match="Failed to parse"):
        load_capture_groups(path)


def test_load_settings_defaults():
    settings = load_settings([], env={})

    assert settings.config_path == Path("./data/config.json")
    assert settings.cron_spec == DEFAULT_CRON_SPEC
    assert settings.port == 8080
    assert settings.debug is False
    assert settings.log_file is None
    assert settings.encode_timeout_seconds is None
    assert settings.abort_on_encoder_failure is False


def test_load_settings_reads_environment():
    env = {
        "CONFIG_PATH": "/etc/timelapse.json",
        "CRON_SPEC": "@hourly",
        "PORT": "9090",
        "DEBUG": "true",
        "ENCODE_TIMEOUT_SECONDS": "600",
        "ABORT_ON_ENCODER_FAILURE": "1",
    }

    settings = load_settings([], env=env)

    assert settings.config_path == Path("/etc/timelapse.json")
    assert settings.cron_spec == "@hourly"
    assert settings.port == 9090
    assert settings.debug is True
    assert settings.encode_timeout_seconds == 600.0
    assert settings.abort_on_encoder_failure is True


def test_flags_take_precedence_over_environment():
    settings = load_settings(["--port", "7000", "--cron-spec", "*/5 * * * * *"], env={"PORT": "9090"})

    assert settings.port == 7000
    assert settings.cron_spec == "*/5 * * * * *"


def test_invalid_port_is_a_config_error():
    with pytest.raises(ConfigError):
        load_settings([], env={"PORT": "http"})
    with pytest.raises(ConfigError):
        load_settings(["--port", "70000"], env={})
