"""Runtime settings for Rishvan."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

# Well-known local port shared by every Rishvan process on the machine
DEFAULT_PORT = 56234
DEFAULT_HOST = "127.0.0.1"

# Marker returned by GET /api/health to identify a Rishvan primary
HEALTH_MARKER = "rishvan-mcp-ok"

DEFAULT_DATA_DIR = Path.home() / ".rishvan-mcp"
DEFAULT_DB_PATH = DEFAULT_DATA_DIR / "app.db"

# Timeouts and intervals (seconds)
PROBE_TIMEOUT = 2.0
POLL_INTERVAL = 1.0
POLL_TIMEOUT = 5.0
SERVER_START_TIMEOUT = 5.0

STATIC_DIR = Path(__file__).parent / "static"


@dataclass
class Settings:
    """Process settings, built once at startup and passed to every component."""

    source_name: str = ""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    probe_timeout: float = PROBE_TIMEOUT
    poll_interval: float = POLL_INTERVAL
    poll_timeout: float = POLL_TIMEOUT
    server_start_timeout: float = SERVER_START_TIMEOUT
    open_browser: bool = True
    ui_dir: Path | None = None

    @property
    def base_url(self) -> str:
        """Base URL of the shared endpoint."""
        return f"http://{self.host}:{self.port}"

    @property
    def static_dir(self) -> Path:
        """Directory holding the UI asset bundle."""
        return Path(self.ui_dir) if self.ui_dir else STATIC_DIR
