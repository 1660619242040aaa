"""Structured logging setup.

Consistent logging format across all modules.
Probe loggers carry the endpoint type and monitored id as a prefix.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union


def setup_logging(log_file: Optional[Path] = None, level: Union[int, str] = logging.INFO):
    """Configure logging for the monitor.

    Logs to both console and file (if provided).
    Level may be given as an int or a name such as "DEBUG".
    """
    if isinstance(level, str):
        level = parse_level(level)

    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Quiet down noisy libraries
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def parse_level(name: str) -> int:
    """Map a level name to its number, raising ValueError on garbage."""
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {name}")
    return level


class ProbeLoggerAdapter(logging.LoggerAdapter):
    """Prefix messages with the probe's endpoint type and monitored id."""

    def process(self, msg, kwargs):
        probe = self.extra['probe']
        config = probe.config
        return f"[{config.endpoint_type}:{config.monitor_ip_id}] {msg}", kwargs
