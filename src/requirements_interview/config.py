"""Configuration helpers for the requirements interview engine."""

from __future__ import annotations

import os
import shlex
import sys
from dataclasses import dataclass, field
from enum import Enum
from importlib import import_module
from pathlib import Path
from shutil import which
from typing import List, Optional, Tuple

DEFAULT_STRIPPED_ENV: Tuple[str, ...] = (
    "CLAUDE_CODE_SSE_PORT",
    "ENABLE_IDE_INTEGRATION",
)


class InterviewScope(str, Enum):
    """Available interview scopes."""

    PROJECT = "project"
    NEW_FEATURE = "new-feature"
    TASK = "task"

    @classmethod
    def from_string(
        cls,
        scope: str | None,
        default: Optional["InterviewScope"] = None,
    ) -> "InterviewScope":
        """Normalize arbitrary user input into a valid scope."""
        if not scope:
            if default is None:
                raise ValueError("Interview scope is required.")
            return default
        normalized = scope.strip().lower().replace(" ", "-").replace("_", "-")
        for candidate in cls:
            if candidate.value == normalized:
                return candidate
        if default is not None:
            return default
        raise ValueError(f"Unsupported interview scope: {scope}")


class Intensity(str, Enum):
    """How hard the assistant should probe before proposing."""

    MINIMAL = "minimal"
    BALANCED = "balanced"
    DEEP_DIVE = "deep-dive"

    @classmethod
    def from_string(
        cls,
        value: str | None,
        default: Optional["Intensity"] = None,
    ) -> "Intensity":
        if not value:
            if default is None:
                raise ValueError("Interview intensity is required.")
            return default
        normalized = value.strip().lower().replace(" ", "-").replace("_", "-")
        for candidate in cls:
            if candidate.value == normalized:
                return candidate
        if default is not None:
            return default
        raise ValueError(f"Unsupported interview intensity: {value}")


@dataclass(slots=True)
class AssistantSettings:
    """How the external assistant CLI is located and invoked."""

    binary: str
    extra_args: List[str] = field(default_factory=list)
    stripped_env: Tuple[str, ...] = DEFAULT_STRIPPED_ENV
    workspace_root: Path = field(default_factory=Path.cwd)
    retry_limit: int = 2
    retry_delay: float = 0.1
    turn_timeout: Optional[float] = None


@dataclass(slots=True)
class AppSettings:
    """Top-level application settings loaded from environment variables."""

    assistant: AssistantSettings
    default_scope: InterviewScope
    intensity: Intensity
    data_dir: Path
    redis_url: Optional[str]
    bridge_host: str
    bridge_port: int
    log_level: str

    @classmethod
    def load(cls) -> "AppSettings":
        """Load settings from the environment or .env file."""
        _ensure_dotenv()
        binary = os.getenv("INTERVIEW_ASSISTANT_BINARY", "").strip()
        if not binary:
            binary = find_assistant_binary()
        extra_args = shlex.split(os.getenv("INTERVIEW_ASSISTANT_ARGS", ""))
        stripped_raw = os.getenv("INTERVIEW_STRIP_ENV")
        if stripped_raw is None:
            stripped_env = DEFAULT_STRIPPED_ENV
        else:
            stripped_env = tuple(
                name.strip() for name in stripped_raw.split(",") if name.strip()
            )
        workspace_root = Path(
            os.getenv("INTERVIEW_WORKSPACE_ROOT", "") or Path.cwd()
        )
        if not workspace_root.is_dir():
            raise RuntimeError(
                f"INTERVIEW_WORKSPACE_ROOT is not a directory: {workspace_root}"
            )
        data_dir = Path(os.getenv("INTERVIEW_DATA_DIR", ".requirements"))
        data_dir.mkdir(parents=True, exist_ok=True)
        redis_url = os.getenv("INTERVIEW_REDIS_URL")
        if redis_url is not None and not redis_url.strip():
            redis_url = None
        default_scope = InterviewScope.from_string(
            os.getenv("INTERVIEW_DEFAULT_SCOPE"),
            default=InterviewScope.NEW_FEATURE,
        )
        intensity = Intensity.from_string(
            os.getenv("INTERVIEW_INTENSITY"),
            default=Intensity.BALANCED,
        )
        retry_limit = _read_int("INTERVIEW_RETRY_LIMIT", "2", minimum=0)
        retry_delay_ms = _read_int("INTERVIEW_RETRY_DELAY_MS", "100", minimum=0)
        turn_timeout_raw = os.getenv("INTERVIEW_TURN_TIMEOUT", "").strip()
        turn_timeout: Optional[float] = None
        if turn_timeout_raw:
            try:
                turn_timeout = float(turn_timeout_raw)
            except ValueError as exc:
                raise RuntimeError(
                    "INTERVIEW_TURN_TIMEOUT must be a number of seconds"
                ) from exc
            if turn_timeout <= 0:
                raise RuntimeError("INTERVIEW_TURN_TIMEOUT must be positive")
        bridge_port = _read_int("INTERVIEW_BRIDGE_PORT", "8765", minimum=1)
        return cls(
            assistant=AssistantSettings(
                binary=binary,
                extra_args=extra_args,
                stripped_env=stripped_env,
                workspace_root=workspace_root,
                retry_limit=retry_limit,
                retry_delay=retry_delay_ms / 1000,
                turn_timeout=turn_timeout,
            ),
            default_scope=default_scope,
            intensity=intensity,
            data_dir=data_dir,
            redis_url=redis_url,
            bridge_host=os.getenv("INTERVIEW_BRIDGE_HOST", "127.0.0.1"),
            bridge_port=bridge_port,
            log_level=os.getenv("INTERVIEW_LOG_LEVEL", "INFO").upper(),
        )


def find_assistant_binary(name: str = "claude") -> str:
    """Locate the assistant CLI, falling back to the bare command name."""

    if sys.platform == "win32":
        home = Path(os.getenv("USERPROFILE") or os.getenv("HOME") or "~")
        local_app_data = Path(
            os.getenv("LOCALAPPDATA") or home / "AppData" / "Local"
        )
        candidates = [
            home / ".local" / "bin" / f"{name}.exe",
            local_app_data / "Programs" / "claude-code" / f"{name}.exe",
            local_app_data / "Microsoft" / "WindowsApps" / f"{name}.exe",
            home / "AppData" / "Roaming" / "npm" / f"{name}.cmd",
            home / "npm-global" / f"{name}.cmd",
        ]
        for candidate in candidates:
            if candidate.exists():
                return str(candidate)
    resolved = which(name)
    return resolved or name


def _read_int(variable: str, default: str, *, minimum: int) -> int:
    raw = os.getenv(variable, default)
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{variable} must be an integer") from exc
    if value < minimum:
        raise RuntimeError(f"{variable} must be at least {minimum}")
    return value


def _ensure_dotenv() -> None:
    """Load dotenv variables and provide a helpful error if missing."""

    try:
        dotenv_module = import_module("dotenv")
    except ModuleNotFoundError as exc:  # pragma: no cover - optional dep
        raise RuntimeError(
            "python-dotenv is required. Install with `pip install "
            "python-dotenv`."
        ) from exc

    load_dotenv = getattr(dotenv_module, "load_dotenv")
    load_dotenv()
