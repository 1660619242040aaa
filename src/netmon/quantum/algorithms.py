"""Algorithm table for the quantum handshake check.

CSV columns: AlgorithmName, DefaultID (hex, "0x" optional), Enabled
(yes/no), EnvironmentVariable, AddEnv (yes/no). An optional curves
file (one group name per line) overrides the enabled flags with the
groups the local OpenSSL build actually supports.
"""

import logging
from pathlib import Path
from typing import List, Optional

from util.io import read_csv_rows, read_lines
from util.types import AlgorithmInfo

logger = logging.getLogger(__name__)

CSV_HEADER = "AlgorithmName,DefaultID,Enabled,EnvironmentVariable,AddEnv"


def parse_hex_id(text: str) -> int:
    """Hex group id; anything unparseable is 0."""
    text = (text or "").strip().replace("0x", "").replace("0X", "")
    try:
        return int(text, 16)
    except ValueError:
        return 0


def parse_yes_no(text: str) -> bool:
    return (text or "").strip().lower() == "yes"


def parse_algorithm_rows(rows: List[List[str]]) -> List[AlgorithmInfo]:
    algorithms = []
    for row in rows:
        if len(row) < 5:
            logger.warning(f"Skipping short algorithm row: {row}")
            continue
        algorithms.append(AlgorithmInfo(
            algorithm_name=row[0],
            default_id=parse_hex_id(row[1]),
            enabled=parse_yes_no(row[2]),
            environment_variable=row[3],
            add_env=parse_yes_no(row[4]),
        ))
    return algorithms


def apply_curves(algorithms: List[AlgorithmInfo], curves: List[str]) -> List[AlgorithmInfo]:
    """Enable exactly the algorithms named in curves."""
    available = set(curves)
    for algo in algorithms:
        algo.enabled = algo.algorithm_name in available
    return algorithms


def load_algorithms(table_path: Path, curves_path: Optional[Path] = None) -> List[AlgorithmInfo]:
    """Load the algorithm table, optionally filtered by a curves list."""
    algorithms = parse_algorithm_rows(read_csv_rows(Path(table_path)))
    if curves_path:
        curves = read_lines(Path(curves_path))
        if curves:
            apply_curves(algorithms, curves)
    enabled = sum(1 for a in algorithms if a.enabled)
    logger.info(f"Loaded {len(algorithms)} algorithms from {table_path} ({enabled} enabled)")
    return algorithms


def format_algorithm_rows(algorithms: List[AlgorithmInfo]) -> List[str]:
    """CSV lines (header first) for writing the table back out."""
    lines = [CSV_HEADER]
    for algo in algorithms:
        lines.append(",".join([
            algo.algorithm_name,
            f"0x{algo.default_id:x}",
            "yes" if algo.enabled else "no",
            algo.environment_variable,
            "yes" if algo.add_env else "no",
        ]))
    return lines
