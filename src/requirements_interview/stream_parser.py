"""Incremental reconstruction of JSON records from assistant stdout."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union, cast

logger = logging.getLogger(__name__)

ENVELOPE_TYPE = "result"


@dataclass(frozen=True, slots=True)
class ParsedRecord:
    """An application-level record, already unwrapped from any envelope."""

    payload: Dict[str, Any]


@dataclass(frozen=True, slots=True)
class EnvelopeError:
    """The CLI reported a transport-level failure for this turn."""

    message: str


ParseEvent = Union[ParsedRecord, EnvelopeError]


class StreamParser:
    """Turn arbitrary stdout chunks into parsed, de-duplicated records.

    Complete lines are parsed as JSON as soon as their newline arrives; a
    trailing partial line waits in the buffer until more output or
    :meth:`flush`. Lines that are not JSON objects are dropped. A record
    identical to the one delivered immediately before it is discarded,
    which covers assistants that emit the same block once while streaming
    and again in a final summary.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._last_key: Optional[str] = None

    @property
    def pending(self) -> str:
        return self._buffer

    def reset(self) -> None:
        self._buffer = ""
        self._last_key = None

    def feed(self, chunk: str) -> List[ParseEvent]:
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        events: List[ParseEvent] = []
        for line in lines:
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[ParseEvent]:
        """Parse whatever is left as a final, best-effort line."""

        remainder, self._buffer = self._buffer, ""
        event = self._process_line(remainder)
        return [event] if event is not None else []

    def _process_line(self, line: str) -> Optional[ParseEvent]:
        text = line.strip()
        if not text:
            return None
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Dropping non-JSON line: %s", text[:100])
            return None
        if not isinstance(parsed, dict):
            logger.debug("Dropping non-object JSON line: %s", text[:100])
            return None
        record = cast(Dict[str, Any], parsed)
        if record.get("type") == ENVELOPE_TYPE:
            if record.get("is_error"):
                message = record.get("result") or "Assistant CLI error"
                return EnvelopeError(message=str(message))
            structured = record.get("structured_output")
            if not isinstance(structured, dict):
                logger.debug("Ignoring result envelope without structured output")
                return None
            record = cast(Dict[str, Any], structured)
        key = json.dumps(record, sort_keys=True, ensure_ascii=False)
        if key == self._last_key:
            logger.debug("Skipping duplicate record of type %s", record.get("type"))
            return None
        self._last_key = key
        return ParsedRecord(payload=record)
