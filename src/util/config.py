"""Monitor configuration.

Loads all settings from .env with sensible defaults.
Everything the probe core needs at startup comes through here.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from dotenv import load_dotenv


def _env_int(name: str, default: int, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class Config:
    """Configuration for the probe scheduler and its collaborators.

    Reads the repo-root .env first (if present), then the process
    environment. Bad numbers fail fast with ValueError.
    """

    def __init__(self, env_file: Optional[Path] = None):
        """Load configuration from .env file."""
        if env_file is None:
            repo_root = Path(__file__).parent.parent.parent
            env_file = repo_root / ".env"

        if env_file.exists():
            load_dotenv(env_file)

        # ===== SCHEDULER =====
        self.max_task_queue_size = _env_int("MAX_TASK_QUEUE_SIZE", 100, minimum=1)
        self.default_timeout_ms = _env_int("DEFAULT_TIMEOUT_MS", 59000, minimum=1)
        self.poll_interval_seconds = _env_int("POLL_INTERVAL_SECONDS", 60, minimum=1)
        self.extend_timeout_multiplier = _env_int("EXTEND_TIMEOUT_MULTIPLIER", 10, minimum=1)

        # ===== FILTERS =====
        # Named strategies as "name:skip[:start]", e.g. "cmd:3,smtp:2"
        self.enabled_filters = _env_list("ENABLED_FILTERS", "")
        self.filter_strategies = self._load_filter_strategies(os.getenv("FILTER_STRATEGIES", ""))

        # ===== LOGGING =====
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        log_file = os.getenv("LOG_FILE")
        self.log_file = Path(log_file) if log_file else None

        # ===== EXTERNAL TOOLS =====
        self.command_path = os.getenv("COMMAND_PATH", "")
        self.oqs_provider_path = os.getenv("OQS_PROVIDER_PATH", "")
        self.native_lib_dir = os.getenv("NATIVE_LIB_DIR", "")
        self.algorithm_table = Path(
            os.getenv("ALGORITHM_TABLE") or os.path.join(self.oqs_provider_path, "AlgoTable.csv")
        )
        self.curves_file = Path(
            os.getenv("CURVES_FILE") or os.path.join(self.oqs_provider_path, "curves")
        )

    @staticmethod
    def _load_filter_strategies(raw: str) -> List[Dict[str, Any]]:
        """Parse FILTER_STRATEGIES (a JSON list of strategy dicts)."""
        if not raw.strip():
            return []
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"FILTER_STRATEGIES is not valid JSON: {e}")
        if not isinstance(parsed, list):
            raise ValueError("FILTER_STRATEGIES must be a JSON list")
        return parsed

    def to_dict(self) -> dict:
        """Export config as dictionary for logging."""
        return {
            "max_task_queue_size": self.max_task_queue_size,
            "default_timeout_ms": self.default_timeout_ms,
            "poll_interval_seconds": self.poll_interval_seconds,
            "extend_timeout_multiplier": self.extend_timeout_multiplier,
            "enabled_filters": self.enabled_filters,
            "filter_strategies": len(self.filter_strategies),
            "log_level": self.log_level,
            "log_file": str(self.log_file) if self.log_file else None,
            "command_path": self.command_path,
            "oqs_provider_path": self.oqs_provider_path,
            "native_lib_dir": self.native_lib_dir,
            "algorithm_table": str(self.algorithm_table),
            "curves_file": str(self.curves_file),
        }

    def __repr__(self) -> str:
        return f"Config(max_task_queue_size={self.max_task_queue_size}, timeout={self.default_timeout_ms}ms)"
