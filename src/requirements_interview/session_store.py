"""Persistence utilities for interview sessions."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, cast
from uuid import uuid4

import redis
from redis import Redis
from redis.exceptions import RedisError

from .config import InterviewScope
from .models import (
    InterviewMessage,
    InterviewProposal,
    SessionRecord,
    SessionStatus,
    utc_timestamp,
)

logger = logging.getLogger(__name__)

INDEX_KEY = "sessions:index"

_UNSET: Any = object()


class SessionStoreError(RuntimeError):
    """Raised when a stored session document cannot be decoded."""


class SessionRepository:
    """Stores session documents on disk and mirrors them into Redis."""

    def __init__(self, data_dir: Path, redis_url: Optional[str] = None) -> None:
        self._sessions_dir = Path(data_dir) / "sessions"
        self._sessions_dir.mkdir(parents=True, exist_ok=True)
        self._redis_url = redis_url
        self._redis: Optional[Redis] = None

    def _get_redis(self) -> Optional[Redis]:
        if not self._redis_url:
            return None
        if self._redis is None:
            try:
                self._redis = redis.from_url(  # type: ignore[call-overload]
                    self._redis_url,
                    decode_responses=True,
                )
            except RedisError as exc:  # pragma: no cover - network guarded
                logger.warning("Redis connection failed: %s", exc)
                self._redis = None
        return self._redis

    @property
    def sessions_dir(self) -> Path:
        """Return the directory holding one JSON document per session."""

        return self._sessions_dir

    def create(self, scope: InterviewScope, raw_input: str | None) -> SessionRecord:
        """Create a drafting session with an empty transcript."""

        now = utc_timestamp()
        record = SessionRecord(
            id=uuid4().hex,
            scope=scope,
            raw_input=raw_input or None,
            status=SessionStatus.DRAFTING,
            conversation=[],
            proposed_output=None,
            created_at=now,
            updated_at=now,
        )
        self._write(record)
        logger.info("Created %s session %s", scope.value, record.id)
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        client = self._get_redis()
        if client:
            try:
                raw_value = client.get(self._key(session_id))
            except RedisError as exc:  # pragma: no cover - best effort
                logger.warning("Redis read failed for %s: %s", session_id, exc)
                raw_value = None
            if raw_value:
                record = self._decode(str(raw_value), origin="redis")
                if record is not None:
                    return record
        path = self._path(session_id)
        if not path.exists():
            return None
        return self._decode(path.read_text(encoding="utf-8"), origin=str(path))

    def update(
        self,
        session_id: str,
        *,
        status: SessionStatus | None = None,
        conversation: List[InterviewMessage] | None = None,
        proposed_output: InterviewProposal | None = _UNSET,
    ) -> Optional[SessionRecord]:
        """Overwrite the given fields; pass ``proposed_output=None`` to clear it."""

        record = self.get(session_id)
        if record is None:
            logger.warning("Ignoring update for unknown session %s", session_id)
            return None
        changed = False
        if status is not None:
            record.status = status
            changed = True
        if conversation is not None:
            record.conversation = list(conversation)
            changed = True
        if proposed_output is not _UNSET:
            record.proposed_output = proposed_output
            changed = True
        if not changed:
            return record
        record.updated_at = utc_timestamp()
        self._write(record)
        return record

    def delete(self, session_id: str) -> None:
        path = self._path(session_id)
        if path.exists():
            path.unlink()
        client = self._get_redis()
        if client:
            try:
                client.delete(self._key(session_id))
                client.zrem(INDEX_KEY, session_id)
            except RedisError as exc:  # pragma: no cover - best effort
                logger.warning("Redis delete failed for %s: %s", session_id, exc)

    def list_all(self, *, limit: int | None = None) -> List[SessionRecord]:
        """Return stored sessions, most recently updated first."""

        records: List[SessionRecord] = []
        for path in self._sessions_dir.glob("*.json"):
            record = self._decode(
                path.read_text(encoding="utf-8"),
                origin=str(path),
            )
            if record is not None:
                records.append(record)
        records.sort(key=lambda item: _sort_key(item.updated_at), reverse=True)
        if limit is not None:
            return records[:limit]
        return records

    def list_active(self) -> List[SessionRecord]:
        """Return sessions that can still be resumed."""

        return [
            record for record in self.list_all() if record.status.is_resumable
        ]

    def _write(self, record: SessionRecord) -> None:
        payload = record.to_dict()
        blob = json.dumps(payload, ensure_ascii=False, indent=2)
        path = self._path(record.id)
        temp_path = path.with_suffix(".json.tmp")
        temp_path.write_text(blob, encoding="utf-8")
        os.replace(temp_path, path)

        client = self._get_redis()
        if client:
            try:
                client.set(self._key(record.id), json.dumps(payload, ensure_ascii=False))
                client.zadd(INDEX_KEY, {record.id: _sort_key(record.updated_at)})
            except RedisError as exc:  # pragma: no cover - best effort
                logger.warning(
                    "Redis persistence failed for %s: %s",
                    record.id,
                    exc,
                )

    def _decode(self, raw: str, *, origin: str) -> Optional[SessionRecord]:
        try:
            return self._parse(raw)
        except SessionStoreError as exc:
            logger.warning("Skipping unreadable session document %s: %s", origin, exc)
            return None

    @staticmethod
    def _parse(raw: str) -> SessionRecord:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SessionStoreError(f"invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SessionStoreError("session document is not an object")
        try:
            return SessionRecord.from_dict(cast(Dict[str, Any], payload))
        except (KeyError, ValueError) as exc:
            raise SessionStoreError(str(exc)) from exc

    def _path(self, session_id: str) -> Path:
        safe_id = "".join(ch for ch in session_id if ch.isalnum() or ch in "-_")
        return self._sessions_dir / f"{safe_id}.json"

    @staticmethod
    def _key(session_id: str) -> str:
        return f"session:{session_id}"


def _sort_key(timestamp: str) -> float:
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0
