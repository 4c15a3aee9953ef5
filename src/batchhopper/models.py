from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

KEYBOARD_KEY_COUNT = 47


class JobPhase(str, Enum):
    INIT = "INIT"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"


class WorkerState(str, Enum):
    POLLING = "polling"
    WORKING = "working"
    IDLE = "idle"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Key:
    lower: str
    upper: str


@dataclass(frozen=True, slots=True)
class Keyboard:
    score: float
    keys: tuple[Key, ...]


@dataclass(frozen=True, slots=True)
class JobSpec:
    name: str
    batch_size: int
    total_batches: int


@dataclass(frozen=True, slots=True)
class BatchAssignment:
    job_name: str
    device_name: str
    batch_size: int
    batch_number: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "device_name": self.device_name,
            "batch_size": self.batch_size,
            "batch_number": self.batch_number,
        }


@dataclass(frozen=True, slots=True)
class Init:
    pass


@dataclass(frozen=True, slots=True)
class InProgress:
    batch_size: int
    completed: int


@dataclass(frozen=True, slots=True)
class BatchComplete:
    keyboards: tuple[Keyboard, ...]


WorkerStatus = Union[Init, InProgress, BatchComplete]


@dataclass(slots=True)
class WorkerRecord:
    host: str
    state: WorkerState = WorkerState.POLLING
    current_batch: int | None = None
    progress: int | None = None
    batches_completed: int = 0
    last_seen_at: str | None = None
    last_error: str | None = None


@dataclass(frozen=True, slots=True)
class StatusReport:
    phase: JobPhase
    job_name: str | None
    completed: int
    total_batches: int
    best: Keyboard | None
    stalled: bool = False
    workers: tuple[WorkerRecord, ...] = field(default_factory=tuple)


def _require_char(value: object, where: str) -> str:
    if not isinstance(value, str) or len(value) != 1:
        raise ValueError(f"{where} must be a single character, got {value!r}")
    return value


def _require_int(value: object, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{where} must be a non-negative integer, got {value!r}")
    return value


def parse_keyboard(raw: object, where: str = "keyboard") -> Keyboard:
    if not isinstance(raw, dict):
        raise ValueError(f"{where} must be an object")
    score = raw.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
        raise ValueError(f"{where}.score must be a finite number, got {score!r}")
    keys_raw = raw.get("keys")
    if not isinstance(keys_raw, list) or len(keys_raw) != KEYBOARD_KEY_COUNT:
        raise ValueError(f"{where}.keys must be a list of {KEYBOARD_KEY_COUNT} keys")

    keys: list[Key] = []
    for idx, item in enumerate(keys_raw):
        if not isinstance(item, dict):
            raise ValueError(f"{where}.keys[{idx}] must be an object")
        keys.append(
            Key(
                lower=_require_char(item.get("lower"), f"{where}.keys[{idx}].lower"),
                upper=_require_char(item.get("upper"), f"{where}.keys[{idx}].upper"),
            )
        )
    return Keyboard(score=float(score), keys=tuple(keys))


def parse_worker_status(payload: object) -> WorkerStatus:
    """Decode a worker's `/update` reply.

    Workers encode the status as an externally tagged union: the bare string
    ``"Init"``, or a single-key object ``{"InProgress": {...}}`` /
    ``{"BatchComplete": {...}}``.
    """
    if payload == "Init" or payload == {"Init": None}:
        return Init()
    if not isinstance(payload, dict) or len(payload) != 1:
        raise ValueError(f"Unrecognised worker status: {payload!r}")

    tag, body = next(iter(payload.items()))
    if not isinstance(body, dict):
        raise ValueError(f"`{tag}` status body must be an object")
    if tag == "InProgress":
        return InProgress(
            batch_size=_require_int(body.get("batch_size"), "InProgress.batch_size"),
            completed=_require_int(body.get("completed"), "InProgress.completed"),
        )
    if tag == "BatchComplete":
        keyboards_raw = body.get("keyboards")
        if not isinstance(keyboards_raw, list):
            raise ValueError("BatchComplete.keyboards must be a list")
        return BatchComplete(
            keyboards=tuple(
                parse_keyboard(item, f"BatchComplete.keyboards[{idx}]")
                for idx, item in enumerate(keyboards_raw)
            )
        )
    raise ValueError(f"Unknown worker status tag: {tag}")
