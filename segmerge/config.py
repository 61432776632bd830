import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_VIDEO_ROOT = "/root/Videos"
DEFAULT_PORT = 8082


@dataclass(frozen=True)
class Settings:
    VIDEO_ROOT: Path
    HOST: str = "0.0.0.0"
    PORT: int = DEFAULT_PORT
    FFMPEG_BINARY: str = "ffmpeg"
    FFMPEG_TIMEOUT_SECONDS: int = 2 * 60 * 60
    WORK_DIR: Optional[Path] = None
    MIN_FREE_SPACE_MB: int = 0
    STATIC_DIR: Optional[Path] = None
    LOG_FILE: Optional[Path] = None

    def __post_init__(self) -> None:
        # Every relative path is resolved against a canonical root
        object.__setattr__(self, "VIDEO_ROOT", Path(self.VIDEO_ROOT).resolve())

    @classmethod
    def load(cls) -> "Settings":
        def env_path(name: str, default: Optional[str] = None) -> Optional[Path]:
            value = os.getenv(name, default)
            return Path(value) if value else None

        def env_int(name: str, default: int) -> int:
            return int(os.getenv(name, str(default)))

        port = env_int("PORT", DEFAULT_PORT)
        if not (1 <= port <= 65535):
            raise ValueError("PORT must be 1-65535")

        timeout = env_int("FFMPEG_TIMEOUT_SECONDS", 2 * 60 * 60)
        if timeout < 0:
            raise ValueError("FFMPEG_TIMEOUT_SECONDS must be >= 0")

        min_free = env_int("MIN_FREE_SPACE_MB", 0)
        if min_free < 0:
            raise ValueError("MIN_FREE_SPACE_MB must be >= 0")

        return cls(
            VIDEO_ROOT=Path(os.getenv("VIDEO_ROOT") or DEFAULT_VIDEO_ROOT),
            HOST=os.getenv("HOST", "0.0.0.0"),
            PORT=port,
            FFMPEG_BINARY=os.getenv("FFMPEG_BINARY") or "ffmpeg",
            FFMPEG_TIMEOUT_SECONDS=timeout,
            WORK_DIR=env_path("WORK_DIR"),
            MIN_FREE_SPACE_MB=min_free,
            STATIC_DIR=env_path("STATIC_DIR", "static"),
            LOG_FILE=env_path("LOG_FILE"),
        )

    @property
    def ffmpeg_timeout(self) -> Optional[int]:
        """Deadline handed to the tool runner; ``None`` waits indefinitely."""
        return self.FFMPEG_TIMEOUT_SECONDS or None
