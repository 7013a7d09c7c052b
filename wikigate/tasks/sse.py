from __future__ import annotations

import codecs
from dataclasses import dataclass


@dataclass(frozen=True)
class StreamRecord:
    event: str
    data: str


class EventStreamAccumulator:
    """Turns raw event-stream bytes into complete records.

    Bytes may arrive split anywhere, including inside a multi-byte UTF-8 sequence or a
    CRLF pair; partial lines stay buffered until the next ``feed`` call.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buf = ""
        self._event = ""
        self._data: list[str] = []

    @property
    def pending(self) -> bool:
        return bool(self._buf) or bool(self._event) or bool(self._data)

    def feed(self, chunk: bytes) -> list[StreamRecord]:
        self._buf += self._decoder.decode(chunk)
        out: list[StreamRecord] = []
        while True:
            idx = self._buf.find("\n")
            if idx == -1:
                break
            line = self._buf[:idx]
            self._buf = self._buf[idx + 1 :]
            record = self._consume_line(line)
            if record is not None:
                out.append(record)
        return out

    def finish(self) -> list[StreamRecord]:
        """Flush a trailing unterminated line and any record still being assembled."""
        self._buf += self._decoder.decode(b"", final=True)
        out: list[StreamRecord] = []
        if self._buf:
            line, self._buf = self._buf, ""
            record = self._consume_line(line)
            if record is not None:
                out.append(record)
        record = self._dispatch()
        if record is not None:
            out.append(record)
        return out

    def _consume_line(self, line: str) -> StreamRecord | None:
        if line.endswith("\r"):
            line = line[:-1]
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        colon = line.find(":")
        if colon == -1:
            name, value = line, ""
        else:
            name, value = line[:colon], line[colon + 1 :].lstrip()

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> StreamRecord | None:
        if not self._event and not self._data:
            return None
        record = StreamRecord(event=self._event or "message", data="\n".join(self._data))
        self._event = ""
        self._data = []
        return record
