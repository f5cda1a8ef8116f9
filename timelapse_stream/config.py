"""Configuration dataclasses and loading helpers for the timelapse stream server."""

from __future__ import annotations

import argparse
import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from timelapse_stream.models import CaptureGroup

DEFAULT_CONFIG_PATH = "./data/config.json"
DEFAULT_CRON_SPEC = "0 */01 * * * *"
DEFAULT_PORT = 8080
DEFAULT_TRUSTED_PROXIES = "127.0.0.1,10.0.0.0/8"

GROUP_NAME_PATTERN = re.compile(r"[A-Za-z0-9_.-]+")


class ConfigError(Exception):
    """Raised when configuration cannot be read or is invalid."""


def _parse_bool(value: Any, default: bool) -> bool:
    """Parse truthy/falsy values from multiple input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return value != 0
    return default


def _parse_optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


@dataclass(frozen=True)
class Settings:
    """Runtime settings resolved from command line flags and the environment."""

    config_path: Path
    cron_spec: str
    host: str
    port: int
    debug: bool
    log_file: Optional[Path]
    ffmpeg_bin: str
    video_codec: str
    encode_timeout_seconds: Optional[float]
    abort_on_encoder_failure: bool
    templates_dir: Optional[Path]
    static_dir: Path
    trusted_proxies: str


def _parse_frame_rates(raw: Any, index: int) -> Tuple[int, ...]:
    if isinstance(raw, bool):
        raise ConfigError(f"Capture group #{index}: 'fps' must be an integer or a list of integers")
    if isinstance(raw, (int, float, str)):
        raw = [raw]
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ConfigError(f"Capture group #{index}: 'fps' must list at least one frame rate")

    rates: List[int] = []
    for value in raw:
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            raise ConfigError(f"Capture group #{index}: invalid frame rate {value!r}")
        try:
            rate = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Capture group #{index}: invalid frame rate {value!r}") from None
        if rate <= 0:
            raise ConfigError(f"Capture group #{index}: frame rate must be positive, got {rate}")
        if rate not in rates:
            rates.append(rate)
    return tuple(rates)


def _required_string(entry: Mapping[str, Any], key: str, index: int) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Capture group #{index}: missing required field '{key}'")
    return value.strip()


def _parse_capture_group(entry: Any, index: int) -> CaptureGroup:
    if not isinstance(entry, Mapping):
        raise ConfigError(f"Capture group #{index}: expected an object, got {type(entry).__name__}")

    name = _required_string(entry, "name", index)
    if not GROUP_NAME_PATTERN.fullmatch(name):
        raise ConfigError(
            f"Capture group #{index}: name {name!r} may only contain letters, digits, '_', '.' and '-'"
        )

    raw_rates = entry.get("fps", entry.get("frameRates"))
    title = entry.get("title")

    return CaptureGroup(
        name=name,
        title=str(title).strip() if title else name,
        pattern=_required_string(entry, "pattern", index),
        frame_rates=_parse_frame_rates(raw_rates, index),
        save_path=Path(_required_string(entry, "savePath", index)),
    )


def parse_capture_groups(data: Any) -> Tuple[CaptureGroup, ...]:
    """Build capture groups from decoded JSON, preserving configuration order."""
    if isinstance(data, Mapping):
        data = data.get("captureGroups")
    if not isinstance(data, list):
        raise ConfigError("Config must be a list of capture groups or an object with 'captureGroups'")

    groups = tuple(_parse_capture_group(entry, index) for index, entry in enumerate(data))

    seen: set[str] = set()
    for group in groups:
        if group.name in seen:
            raise ConfigError(f"Duplicate capture group name: {group.name!r}")
        seen.add(group.name)
    return groups


def load_capture_groups(config_path: Path | str) -> Tuple[CaptureGroup, ...]:
    """Load capture groups from a JSON config file."""
    path = Path(config_path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except OSError as exc:
        raise ConfigError(f"Failed to read config '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse config '{path}': {exc}") from exc
    return parse_capture_groups(data)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timelapse-stream",
        description="Generate timelapse videos on a schedule and stream them over HTTP.",
    )
    parser.add_argument("--config-path", help=f"Capture group config (env CONFIG_PATH, default {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--cron-spec", help=f"Cron spec with seconds (env CRON_SPEC, default '{DEFAULT_CRON_SPEC}')")
    parser.add_argument("--host", help="Interface to bind (env HOST, default 0.0.0.0)")
    parser.add_argument("--port", type=int, help=f"Port to listen on (env PORT, default {DEFAULT_PORT})")
    parser.add_argument("--debug", action="store_true", default=None, help="Enable debug logging (env DEBUG)")
    parser.add_argument("--log-file", help="Optional log file path (env LOG_FILE)")
    parser.add_argument("--ffmpeg-bin", help="ffmpeg executable (env FFMPEG_BIN, default ffmpeg)")
    parser.add_argument("--video-codec", help="Output video codec (env VIDEO_CODEC, default libx264)")
    parser.add_argument(
        "--encode-timeout",
        type=float,
        help="Kill an encode after this many seconds (env ENCODE_TIMEOUT_SECONDS)",
    )
    parser.add_argument(
        "--abort-on-encoder-failure",
        action="store_true",
        default=None,
        help="Stop the generation pass on the first encoder failure (env ABORT_ON_ENCODER_FAILURE)",
    )
    parser.add_argument("--templates-dir", help="Directory holding videos.html (env TEMPLATES_DIR)")
    parser.add_argument("--static-dir", help="Directory served under /static (env STATIC_DIR, default ./static)")
    parser.add_argument(
        "--trusted-proxies",
        help=f"Comma separated proxy addresses (env TRUSTED_PROXIES, default {DEFAULT_TRUSTED_PROXIES})",
    )
    return parser


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def load_settings(
    argv: Optional[Sequence[str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Resolve runtime settings; flags take precedence over environment variables."""
    source_env = os.environ if env is None else env
    args = build_arg_parser().parse_args(argv)

    port_value = _first(args.port, source_env.get("PORT"))
    if port_value is None:
        port = DEFAULT_PORT
    else:
        try:
            port = int(port_value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid port: {port_value!r}") from None
        if not 0 < port < 65536:
            raise ConfigError(f"Port out of range: {port}")

    encode_timeout_raw = _first(args.encode_timeout, source_env.get("ENCODE_TIMEOUT_SECONDS"))
    log_file = _first(args.log_file, source_env.get("LOG_FILE"))
    templates_dir = _first(args.templates_dir, source_env.get("TEMPLATES_DIR"))

    return Settings(
        config_path=Path(_first(args.config_path, source_env.get("CONFIG_PATH"), DEFAULT_CONFIG_PATH)),
        cron_spec=str(_first(args.cron_spec, source_env.get("CRON_SPEC"), DEFAULT_CRON_SPEC)),
        host=str(_first(args.host, source_env.get("HOST"), "0.0.0.0")),
        port=port,
        debug=_parse_bool(_first(args.debug, source_env.get("DEBUG")), False),
        log_file=Path(log_file) if log_file else None,
        ffmpeg_bin=str(_first(args.ffmpeg_bin, source_env.get("FFMPEG_BIN"), "ffmpeg")),
        video_codec=str(_first(args.video_codec, source_env.get("VIDEO_CODEC"), "libx264")),
        encode_timeout_seconds=_parse_optional_float(encode_timeout_raw),
        abort_on_encoder_failure=_parse_bool(
            _first(args.abort_on_encoder_failure, source_env.get("ABORT_ON_ENCODER_FAILURE")),
            False,
        ),
        templates_dir=Path(templates_dir) if templates_dir else None,
        static_dir=Path(_first(args.static_dir, source_env.get("STATIC_DIR"), "./static")),
        trusted_proxies=str(
            _first(args.trusted_proxies, source_env.get("TRUSTED_PROXIES"), DEFAULT_TRUSTED_PROXIES)
        ),
    )


def iter_group_summaries(groups: Iterable[CaptureGroup]) -> Iterable[str]:
    """Yield one human readable line per capture group for startup logging."""
    for group in groups:
        rates = ", ".join(str(rate) for rate in group.frame_rates)
        yield f"'{group.title}' ({group.name}): pattern={group.pattern} fps=[{rates}] save_path={group.save_path}"


__all__ = [
    "ConfigError",
    "Settings",
    "build_arg_parser",
    "iter_group_summaries",
    "load_capture_groups",
    "load_settings",
    "parse_capture_groups",
    "_parse_bool",
]
