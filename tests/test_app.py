import json
import shutil
import sys
from pathlib import Path
from unittest.mock import patch

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import timelapse_stream.app as app_module  # noqa: E402
from timelapse_stream.app import TimelapseStreamServer  # noqa: E402
from timelapse_stream.catalog import DuplicateVideoError  # noqa: E402
from timelapse_stream.cli import main  # noqa: E402
from timelapse_stream.config import load_settings  # noqa: E402


def write_yard_config(tmp_path: Path) -> Path:
    frame_dir = tmp_path / "frames" / "yard"
    frame_dir.mkdir(parents=True)
    for index in range(5):
        image = np.full((48, 64, 3), index * 50, dtype=np.uint8)
        cv2.imwrite(str(frame_dir / f"{index:05d}.jpg"), image)

    out_dir = tmp_path / "out"
    out_dir.mkdir()
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            [
                {
                    "name": "yard",
                    "title": "Yard",
                    "pattern": str(frame_dir / "*.jpg"),
                    "fps": [10],
                    "savePath": str(out_dir),
                }
            ]
        ),
        encoding="utf-8",
    )
    return config_path


def build_server(config_path: Path, *extra_args: str) -> TimelapseStreamServer:
    settings = load_settings(["--config-path", str(config_path), *extra_args], env={})
    return TimelapseStreamServer(settings)


def test_server_wires_catalog_and_scheduler(tmp_path):
    server = build_server(write_yard_config(tmp_path), "--cron-spec", "@every 10m")

    assert server.catalog.filenames() == ("yard_10_fps.mp4",)
    assert server.scheduler.groups == server.capture_groups
    assert server.scheduler.pipeline is server.pipeline
    assert server.pipeline.encoder is server.encoder


def test_run_starts_scheduler_and_serves_then_stops(tmp_path):
    server = build_server(write_yard_config(tmp_path))

    with patch.object(server.scheduler, "start") as start, patch.object(
        server.scheduler, "shutdown"
    ) as shutdown, patch.object(app_module.uvicorn, "run") as run:
        server.run()

    start.assert_called_once_with()
    shutdown.assert_called_once_with()
    assert run.call_args.args[0] is server.app
    assert run.call_args.kwargs["port"] == 8080


def test_cli_exits_non_zero_on_missing_config(tmp_path):
    assert main(["--config-path", str(tmp_path / "missing.json")]) == 1


def test_cli_exits_non_zero_on_bad_cron_spec(tmp_path):
    config_path = write_yard_config(tmp_path)

    assert main(["--config-path", str(config_path), "--cron-spec", "every minute"]) == 1


def test_colliding_video_names_prevent_startup(tmp_path):
    out_dir = tmp_path / "out"
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            [
                {"name": "cam", "pattern": str(tmp_path / "cam" / "*.jpg"), "fps": 10, "savePath": str(out_dir)},
                {"name": "cam_temp", "pattern": str(tmp_path / "other" / "*.jpg"), "fps": 10, "savePath": str(out_dir)},
            ]
        ),
        encoding="utf-8",
    )

    with pytest.raises(DuplicateVideoError, match="cam_temp_10_fps.mp4"):
        build_server(config_path)
    assert main(["--config-path", str(config_path)]) == 1


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
def test_yard_scenario_generates_and_streams_video(tmp_path):
    server = build_server(write_yard_config(tmp_path))

    results = server.scheduler.run_pass(reason="test")

    video_path = tmp_path / "out" / "yard_10_fps.mp4"
    assert [result.status for result in results] == ["published"]
    assert video_path.exists()
    assert not (tmp_path / "out" / "yard_temp_10_fps.mp4").exists()

    client = TestClient(server.app)
    for _ in range(2):
        response = client.get("/stream/yard_10_fps.mp4")
        size = video_path.stat().st_size
        assert response.status_code == 206
        assert response.headers["content-range"] == f"bytes 0-{size - 1}/{size}"
        assert response.content == video_path.read_bytes()
        server.scheduler.run_pass(reason="regenerate")
