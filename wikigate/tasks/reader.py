from __future__ import annotations

import http.client
import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import jsonschema

from wikigate.tasks.sse import EventStreamAccumulator, StreamRecord

STATUS_SUCCEEDED = "succeeded"
IN_FLIGHT_STATUSES = frozenset({"queued", "running"})

KIND_PROGRESS = "progress"
KIND_STATUS = "status"
KIND_EVENT = "event"


class StreamConnectError(RuntimeError):
    pass


class StreamExhaustedError(RuntimeError):
    pass


@lru_cache(maxsize=1)
def _task_status_validator() -> jsonschema.Draft202012Validator:
    path = Path(__file__).resolve().parent / "schemas" / "task_status.schema.json"
    return jsonschema.Draft202012Validator(json.loads(path.read_text(encoding="utf-8")))


@dataclass(frozen=True)
class TaskNotification:
    kind: str
    event: str
    data: str
    parsed: bool = False
    status: Optional[str] = None
    phase: Optional[str] = None
    message: Optional[str] = None
    wiki_id: Optional[str] = None
    terminal: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "event": self.event,
            "data": self.data,
            "parsed": self.parsed,
            "status": self.status,
            "phase": self.phase,
            "message": self.message,
            "wiki_id": self.wiki_id,
            "terminal": self.terminal,
        }


NotificationSink = Callable[[TaskNotification], None]


def _optional_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        return str(value)
    return None


def _first_present(obj: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = _optional_str(obj.get(key))
        if value is not None:
            return value
    return "progress"


def parse_progress(record: StreamRecord) -> TaskNotification:
    try:
        obj = json.loads(record.data)
    except ValueError:
        obj = None
    if not isinstance(obj, dict):
        return TaskNotification(kind=KIND_PROGRESS, event=record.event, data=record.data)

    status = _first_present(obj, "status", "type")
    return TaskNotification(
        kind=KIND_PROGRESS,
        event=record.event,
        data=record.data,
        parsed=True,
        status=status,
        phase=_optional_str(obj.get("phase")),
        message=_optional_str(obj.get("message")),
    )


def parse_status(record: StreamRecord) -> TaskNotification:
    """Parse a status record; anything that is not a well-formed in-flight status is terminal."""
    try:
        obj = json.loads(record.data)
        _task_status_validator().validate(obj)
    except (ValueError, jsonschema.ValidationError):
        return TaskNotification(kind=KIND_STATUS, event=record.event, data=record.data, terminal=True)

    status = str(obj["status"]).lower()
    return TaskNotification(
        kind=KIND_STATUS,
        event=record.event,
        data=record.data,
        parsed=True,
        status=status,
        message=_optional_str(obj.get("message")),
        wiki_id=_optional_str(obj.get("wiki_id")),
        terminal=status not in IN_FLIGHT_STATUSES,
    )


class TaskEventStreamReader:
    """Follows one task event stream until a terminal status record arrives.

    A reader owns its accumulator and may follow exactly one stream.
    """

    def __init__(self, *, on_notification: Optional[NotificationSink] = None) -> None:
        self._acc = EventStreamAccumulator()
        self._on_notification = on_notification
        self._result: Optional[bool] = None
        self._used = False

    @property
    def result(self) -> Optional[bool]:
        return self._result

    def handle(self, record: StreamRecord) -> Optional[TaskNotification]:
        if record.event == "comment":
            return None

        if record.event == "progress":
            note = parse_progress(record)
        elif record.event == "status":
            note = parse_status(record)
            if note.terminal:
                self._result = note.parsed and note.status == STATUS_SUCCEEDED
        else:
            note = TaskNotification(kind=KIND_EVENT, event=record.event, data=record.data)

        if self._on_notification is not None:
            self._on_notification(note)
        return note

    def _handle_all(self, records: Iterable[StreamRecord]) -> bool:
        for record in records:
            self.handle(record)
            if self._result is not None:
                return True
        return False

    def follow(self, chunks: Iterable[bytes], *, release: Optional[Callable[[], None]] = None) -> bool:
        if self._used:
            raise RuntimeError("TaskEventStreamReader can follow only one stream")
        self._used = True

        it = iter(chunks)
        interrupted: Optional[BaseException] = None
        try:
            while True:
                # Only reads are transport failures; sink errors propagate unchanged.
                try:
                    chunk = next(it)
                except StopIteration:
                    break
                except (OSError, http.client.HTTPException) as e:
                    interrupted = e
                    break
                if self._handle_all(self._acc.feed(chunk)):
                    return bool(self._result)

            if self._handle_all(self._acc.finish()):
                return bool(self._result)
        finally:
            close = getattr(it, "close", None)
            if callable(close):
                close()
            if release is not None:
                release()

        if interrupted is not None:
            raise StreamExhaustedError(
                f"event stream interrupted without terminal status: {type(interrupted).__name__}"
            ) from interrupted
        raise StreamExhaustedError("event stream ended without terminal status")


def follow_task_stream(
    chunks: Iterable[bytes],
    *,
    release: Optional[Callable[[], None]] = None,
    on_notification: Optional[NotificationSink] = None,
) -> bool:
    return TaskEventStreamReader(on_notification=on_notification).follow(chunks, release=release)
