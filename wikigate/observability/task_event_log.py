from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from wikigate.tasks.reader import TaskNotification

_TASK_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")


def _format_datetime(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


class FileTaskEventLog:
    """Append-only notification log, one JSONL file per task id."""

    def __init__(self, *, base_dir: Path) -> None:
        self._base_dir = base_dir

    def path_for(self, *, task_id: str) -> Path:
        if _TASK_ID_RE.match(task_id) is None:
            raise ValueError(f"invalid task id: {task_id!r}")
        return self._base_dir / "tasks" / f"{task_id}.jsonl"

    def append(self, *, task_id: str, note: TaskNotification, occurred_at: Optional[datetime] = None) -> None:
        path = self.path_for(task_id=task_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        row = {"task_id": task_id, "occurred_at": _format_datetime(occurred_at or datetime.now(timezone.utc))}
        row.update(note.to_dict())
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")

    def read(self, *, task_id: str) -> list[dict]:
        path = self.path_for(task_id=task_id)
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
