"""Safe file I/O utilities.

Endpoint lists, result dumps and the algorithm table all go through
these helpers.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def ensure_dir(path: Path) -> Path:
    """Ensure directory exists, create if needed. Returns the path."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write data to JSON file safely."""
    path = Path(path)
    ensure_dir(path.parent)

    try:
        with open(path, 'w') as f:
            json.dump(data, f, indent=indent, default=str)
        logger.debug(f"Wrote JSON to {path}")
    except Exception as e:
        logger.error(f"Failed to write JSON to {path}: {e}")
        raise


def read_json(path: Path) -> Optional[Any]:
    """Read JSON file safely. Returns None if file doesn't exist or is invalid."""
    path = Path(path)

    if not path.exists():
        return None

    try:
        with open(path, 'r') as f:
            return json.load(f)
    except Exception as e:
        logger.warning(f"Failed to read JSON from {path}: {e}")
        return None


def read_csv_rows(path: Path, skip_header: bool = True) -> List[List[str]]:
    """Read a CSV file into a list of raw rows (lists of stripped fields)."""
    path = Path(path)
    rows = []
    with open(path, 'r', newline='') as f:
        reader = csv.reader(f)
        for index, row in enumerate(reader):
            if skip_header and index == 0:
                continue
            if not row or not any(cell.strip() for cell in row):
                continue
            rows.append([cell.strip() for cell in row])
    return rows


def read_lines(path: Path) -> List[str]:
    """Read non-empty stripped lines. Missing file gives an empty list."""
    path = Path(path)
    if not path.exists():
        logger.warning(f"File not found: {path}")
        return []
    with open(path, 'r') as f:
        return [line.strip() for line in f if line.strip()]


def results_to_rows(results: Dict[int, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten {monitor_id: result_dict} into rows sorted by id."""
    return [dict(monitor_ip_id=key, **value) for key, value in sorted(results.items())]
