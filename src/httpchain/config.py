"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

One dataclass holding every setting, with defaults suited to development.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION SOURCES                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Command-line arguments   python -m httpchain --port 3000       │
    │   2. Environment variables    HTTP_PORT=3000 python -m httpchain    │
    │   3. Defaults below                                                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Static mounts are "URL_ROOT=FS_ROOT" pairs:

    --static /public=./public --static /assets=/srv/assets
    HTTP_STATIC="/public=./public,/assets=/srv/assets"

Each pair becomes one StaticFile stage. Settings are read once at startup and
never change while the server runs, which is why worker threads can read them
without locking.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional
import os


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


def parse_static_mount(value: str) -> tuple[str, str]:
    """
    Parse "URL_ROOT=FS_ROOT" into a (url_root, fs_root) pair.

        parse_static_mount("/public=./public")  →  ("/public", "./public")

    Raises:
        ValueError: If either side is missing or url_root is not absolute.
    """
    url_root, sep, fs_root = value.partition("=")
    url_root = url_root.strip()
    fs_root = fs_root.strip()

    if not sep or not url_root or not fs_root:
        raise ValueError(f"Static mount must look like URL_ROOT=FS_ROOT, got {value!r}")
    if not url_root.startswith("/"):
        raise ValueError(f"Static URL root must start with '/', got {url_root!r}")

    return url_root, fs_root


@dataclass
class ServerConfig:
    """
    Configuration for the HTTP server.

    Development:
        ServerConfig(log_level="DEBUG", static_mounts=[("/public", "./public")])

    Production:
        ServerConfig(host="0.0.0.0", port=80, max_workers=32)
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    port: int = 8080
    backlog: int = 128
    buffer_size: int = 8192

    timeout: Optional[float] = 30.0
    """Seconds to wait for the first request on a connection."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    # ─────────────────────────────────────────────────────────────────────
    # THREAD POOL
    # ─────────────────────────────────────────────────────────────────────

    min_workers: int = 4
    max_workers: int = 16

    # ─────────────────────────────────────────────────────────────────────
    # STATIC FILES
    # ─────────────────────────────────────────────────────────────────────

    static_mounts: list[tuple[str, str]] = field(default_factory=list)
    """(url_root, fs_root) pairs, one StaticFile stage each, in order."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"

    server_name: str = "httpchain/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Build a config from environment variables.

            HTTP_HOST        bind address          (127.0.0.1)
            HTTP_PORT        port                  (8080)
            HTTP_WORKERS     max worker threads    (16)
            HTTP_TIMEOUT     first-request timeout (30)
            HTTP_STATIC      comma-separated URL_ROOT=FS_ROOT mounts
            HTTP_LOG_LEVEL   DEBUG/INFO/...        (INFO)
            HTTP_LOG_FORMAT  text/json             (text)

        Raises:
            ValueError: On unparsable numbers or mounts.
        """
        mounts = [
            parse_static_mount(item)
            for item in os.getenv("HTTP_STATIC", "").split(",")
            if item.strip()
        ]

        max_workers = int(os.getenv("HTTP_WORKERS", "16"))

        return cls(
            host=os.getenv("HTTP_HOST", "127.0.0.1"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            min_workers=min(cls.min_workers, max_workers),
            max_workers=max_workers,
            timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            static_mounts=mounts,
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("HTTP_LOG_FORMAT", "text").lower(),
        )

    def validate(self) -> None:
        """
        Check values at startup, not on the first request.

        Raises:
            ValueError: Describing the first invalid setting.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535 (0 picks a free port).")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")

        for mount in self.static_mounts:
            if len(mount) != 2 or not str(mount[0]).startswith("/"):
                raise ValueError(f"Invalid static mount: {mount!r}")
