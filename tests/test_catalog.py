import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from timelapse_stream.catalog import Catalog, DuplicateVideoError  # noqa: E402
from timelapse_stream.config import ConfigError  # noqa: E402
from timelapse_stream.models import CaptureGroup  # noqa: E402


def make_group(name: str, rates=(10,), save_path: str = "out") -> CaptureGroup:
    return CaptureGroup(
        name=name,
        title=name.title(),
        pattern=f"frames/{name}/*.jpg",
        frame_rates=tuple(rates),
        save_path=Path(save_path),
    )


def test_catalog_indexes_every_group_and_rate():
    yard = make_group("yard", rates=(10, 30))
    garden = make_group("garden", rates=(5,), save_path="garden-out")

    catalog = Catalog.from_groups([yard, garden])

    assert catalog.filenames() == ("yard_10_fps.mp4", "yard_30_fps.mp4", "garden_5_fps.mp4")
    assert len(catalog) == 3
    assert catalog.lookup("yard_30_fps.mp4") is yard
    assert catalog.path_for("garden_5_fps.mp4") == Path("garden-out") / "garden_5_fps.mp4"


def test_single_rate_groups_use_the_same_naming_scheme():
    catalog = Catalog.from_groups([make_group("porch")])

    assert "porch_10_fps.mp4" in catalog
    assert "porch.mp4" not in catalog


def test_unknown_filenames_are_absent():
    catalog = Catalog.from_groups([make_group("yard")])

    assert catalog.lookup("yard_temp_10_fps.mp4") is None
    assert catalog.path_for("nope.mp4") is None


def test_duplicate_video_names_fail_at_build_time():
    first = make_group("yard", save_path="a")
    second = make_group("yard", save_path="b")

    with pytest.raises(DuplicateVideoError) as excinfo:
        Catalog.from_groups([first, second])

    assert isinstance(excinfo.value, ConfigError)


def test_temp_name_colliding_with_published_video_is_rejected():
    cam = make_group("cam", save_path="shared")
    cam_temp = make_group("cam_temp", save_path="shared")

    assert cam.temp_filename(10) == cam_temp.video_filename(10)
    for groups in ([cam, cam_temp], [cam_temp, cam]):
        with pytest.raises(DuplicateVideoError, match="cam_temp_10_fps.mp4"):
            Catalog.from_groups(groups)


def test_temp_name_in_another_directory_is_allowed():
    cam = make_group("cam", save_path="cam-out")
    cam_temp = make_group("cam_temp", save_path="other-out")

    catalog = Catalog.from_groups([cam, cam_temp])

    assert catalog.lookup("cam_temp_10_fps.mp4") is cam_temp


def test_catalog_is_read_only():
    catalog = Catalog.from_groups([make_group("yard")])

    with pytest.raises(TypeError):
        catalog._entries["extra.mp4"] = make_group("extra")
