from __future__ import annotations

import json
import re
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Iterator, Optional

from wikigate.tasks.reader import NotificationSink, StreamConnectError, TaskEventStreamReader

VISIBILITIES = ("public", "private", "unlisted")

_TASK_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")


class ProvisionerRequestError(RuntimeError):
    def __init__(self, message: str, *, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class TaskEventStream:
    """An open task event stream: raw byte chunks plus an explicit release."""

    def __init__(self, resp: Any, *, chunk_size: int = 4096) -> None:
        self._resp = resp
        self._chunk_size = chunk_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def chunks(self) -> Iterator[bytes]:
        while not self._closed:
            chunk = self._resp.read1(self._chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._resp.close()

    def __enter__(self) -> "TaskEventStream":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class ProvisionerClient:
    def __init__(
        self,
        *,
        base_url: str,
        bearer_token: Optional[str] = None,
        cookie: Optional[str] = None,
        http_timeout_seconds: float = 30.0,
        events_read_timeout_seconds: float = 300.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._bearer_token = bearer_token
        self._cookie = cookie
        self._http_timeout_seconds = float(http_timeout_seconds)
        self._events_read_timeout_seconds = float(events_read_timeout_seconds)

    def _headers(self, **extra: str) -> dict[str, str]:
        headers = dict(extra)
        if self._bearer_token:
            headers["Authorization"] = f"Bearer {self._bearer_token}"
        if self._cookie:
            headers["Cookie"] = self._cookie
        return headers

    def task_events_url(self, task_id: str) -> str:
        return f"{self._base_url}/provisioner/v1/tasks/{urllib.parse.quote(task_id, safe='')}/events"

    def create_wiki(self, *, name: str, slug: str, language: str = "en", visibility: str = "public") -> str:
        """Submit a provisioning request and return the task id to follow."""
        if not name or not slug:
            raise ValueError("name and slug must be non-empty")
        if visibility not in VISIBILITIES:
            raise ValueError(f"visibility must be one of {', '.join(VISIBILITIES)}")

        body = json.dumps(
            {"name": name, "slug": slug, "language": language, "visibility": visibility},
            ensure_ascii=False,
        ).encode("utf-8")
        req = urllib.request.Request(
            f"{self._base_url}/provisioner/v1/wikis",
            method="POST",
            data=body,
            headers=self._headers(**{"Content-Type": "application/json", "Accept": "application/json"}),
        )
        try:
            with urllib.request.urlopen(req, timeout=self._http_timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            text = e.read().decode("utf-8", errors="replace")
            raise ProvisionerRequestError(f"HTTP {e.code} creating wiki {slug}", status=e.code, body=text) from e
        except Exception as e:
            raise ProvisionerRequestError(f"failed to create wiki {slug}: {type(e).__name__}: {e}") from e

        try:
            obj = json.loads(raw.decode("utf-8"))
        except Exception as e:
            raise ProvisionerRequestError("invalid JSON from create wiki") from e
        if not isinstance(obj, dict):
            raise ProvisionerRequestError("invalid create wiki response shape")

        task_id = obj.get("task_id")
        if not isinstance(task_id, str) or _TASK_ID_RE.match(task_id) is None:
            raise ProvisionerRequestError("create wiki response did not return a usable task_id")
        return task_id

    def open_task_events(self, task_id: str) -> TaskEventStream:
        req = urllib.request.Request(
            self.task_events_url(task_id),
            method="GET",
            headers=self._headers(**{"Accept": "text/event-stream", "Cache-Control": "no-cache"}),
        )
        try:
            resp = urllib.request.urlopen(req, timeout=self._events_read_timeout_seconds)
        except urllib.error.HTTPError as e:
            e.close()
            raise StreamConnectError(f"event stream connect failed: HTTP {e.code}") from e
        except Exception as e:
            raise StreamConnectError(f"event stream connect failed: {type(e).__name__}: {e}") from e

        status = int(getattr(resp, "status", 0) or 0)
        if status < 200 or status >= 300 or not hasattr(resp, "read1"):
            resp.close()
            raise StreamConnectError(f"event stream connect failed: HTTP {status}")
        return TaskEventStream(resp)

    def follow_task(self, task_id: str, *, on_notification: Optional[NotificationSink] = None) -> bool:
        stream = self.open_task_events(task_id)
        reader = TaskEventStreamReader(on_notification=on_notification)
        return reader.follow(stream.chunks(), release=stream.close)
