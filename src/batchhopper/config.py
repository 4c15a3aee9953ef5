from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(slots=True)
class PathsConfig:
    log: Path


@dataclass(slots=True)
class PollConfig:
    interval_seconds: float = 5
    request_timeout_seconds: float | None = None


@dataclass(slots=True)
class JobConfig:
    clear_results_on_start: bool = False


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig
    poll: PollConfig = field(default_factory=PollConfig)
    job: JobConfig = field(default_factory=JobConfig)
    workers: list[str] = field(default_factory=list)


def _mapping(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _mapping(raw, "paths")
    poll_raw = _mapping(raw, "poll")
    job_raw = _mapping(raw, "job")
    workers_raw = raw.get("workers") or []
    if not isinstance(workers_raw, list):
        raise ValueError("`workers` must be a list")

    log_path = Path(str(paths_raw.get("log", "batchhopper.log"))).expanduser()
    if not log_path.is_absolute():
        log_path = config_path.parent / log_path

    timeout_raw = poll_raw.get("request_timeout_seconds")
    poll = PollConfig(
        interval_seconds=float(poll_raw.get("interval_seconds", 5)),
        request_timeout_seconds=None if timeout_raw is None else float(timeout_raw),
    )
    if poll.interval_seconds < 1:
        raise ValueError("`poll.interval_seconds` must be >= 1")
    if poll.request_timeout_seconds is not None and poll.request_timeout_seconds <= 0:
        raise ValueError("`poll.request_timeout_seconds` must be > 0 or null")

    clear_results = job_raw.get("clear_results_on_start", False)
    if not isinstance(clear_results, bool):
        raise ValueError("`job.clear_results_on_start` must be a boolean")

    workers: list[str] = []
    for idx, item in enumerate(workers_raw):
        if not isinstance(item, str) or not item.strip():
            raise ValueError(f"`workers[{idx}]` must be a non-empty address string")
        workers.append(item.strip())

    return AppConfig(
        paths=PathsConfig(log=log_path),
        poll=poll,
        job=JobConfig(clear_results_on_start=clear_results),
        workers=workers,
    )


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.log.parent.mkdir(parents=True, exist_ok=True)
