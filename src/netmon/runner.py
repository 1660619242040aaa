"""Monitor runner - load endpoints, poll, collect results.

Each cycle asks the collection for the probes due now, runs the short
ones concurrently and the long-running ones through the gate, and
merges every finished result into a map keyed by monitored id.
"""

import argparse
import asyncio
import logging
import os
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from util.config import Config
from util.io import read_json, write_json, results_to_rows
from util.log import setup_logging
from util.types import AlgorithmInfo, PingParams, ProbeConfig, ProbeResult

from netmon.collaborators import CommandProcessorProvider, SubprocessCommandProcessor
from netmon.collection import ProbeCollection
from netmon.endpoint_types import registry
from netmon.factory import ConnectFactory
from netmon.filters import ConfigurableFilterStrategy, build_filter_configs
from netmon.quantum.algorithms import load_algorithms
from netmon.quantum.openssl import OpenSSLRunner

logger = logging.getLogger(__name__)


def load_endpoints(path: Path) -> List[ProbeConfig]:
    """Read a JSON list of endpoint dicts."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Endpoint file not found: {path}")
    data = read_json(path)
    if not isinstance(data, list):
        raise ValueError(f"Endpoint file must contain a JSON list: {path}")
    return [ProbeConfig.from_dict(item) for item in data]


def default_processor_provider(config: Config) -> CommandProcessorProvider:
    """Processors for the tools this host has; the rest stay unregistered."""
    provider = CommandProcessorProvider()
    nmap = os.path.join(config.command_path, "nmap") if config.command_path else "nmap"
    provider.register("Nmap", SubprocessCommandProcessor(nmap))
    return provider


def load_algorithm_table(config: Config) -> List[AlgorithmInfo]:
    if not config.algorithm_table.exists():
        logger.warning(f"Algorithm table not found at {config.algorithm_table}; quantum checks use built-in groups")
        return []
    return load_algorithms(config.algorithm_table, config.curves_file)


class MonitorRunner:
    """Owns the collection and drives poll cycles."""

    def __init__(self, config: Config, collection: Optional[ProbeCollection] = None):
        self.config = config
        self.params = PingParams(timeout=config.default_timeout_ms,
                                 extend_timeout_multiplier=config.extend_timeout_multiplier)
        if collection is None:
            collection = self._build_collection()
        self.collection = collection
        self.results: Dict[int, Dict[str, Any]] = {}

    def _build_collection(self) -> ProbeCollection:
        config = self.config
        factory = ConnectFactory(
            processor_provider=default_processor_provider(config),
            algorithms=load_algorithm_table(config),
            openssl_runner=OpenSSLRunner(config.command_path, config.oqs_provider_path),
        )
        strategy = ConfigurableFilterStrategy(
            build_filter_configs(config.filter_strategies, config.enabled_filters)
        )
        for line in strategy.describe():
            logger.info(f"Filter {line}")
        return ProbeCollection(factory, strategy, config.max_task_queue_size, self.params)

    def merge(self, result: ProbeResult, monitor_ip_id: int):
        self.results[monitor_ip_id] = result.to_dict()

    async def seed(self, endpoints: List[ProbeConfig]):
        await self.collection.net_connect_factory(endpoints, self.params, is_init=True)
        counts = Counter(p.config.endpoint_type for p in self.collection.probes)
        logger.info(f"Registered {len(self.collection)} probes")
        for endpoint_type, count in sorted(counts.items()):
            logger.info(f"  {registry.get_friendly_name(endpoint_type)}: {count} "
                        f"(estimate {registry.get_processing_time_estimate(endpoint_type)})")

    async def run_cycle(self) -> int:
        """Run every probe due this cycle. Returns how many were started."""
        due = self.collection.get_filtered()
        tasks = []
        for probe in due:
            if probe.is_long_running:
                tasks.append(self.collection.handle_long_running_task(probe, self.merge))
            else:
                tasks.append(self.collection.handle_short_running_task(probe, self.merge))
        logger.info(f"Cycle starting: {len(due)} probes due")
        await asyncio.gather(*tasks)
        self.collection.log_info()
        return len(due)

    async def run(self, endpoints: List[ProbeConfig], cycles: int = 1) -> Dict[int, Dict[str, Any]]:
        await self.seed(endpoints)
        for cycle in range(cycles):
            await self.run_cycle()
            up = sum(1 for r in self.results.values() if r['is_up'])
            logger.info(f"Cycle {cycle + 1}/{cycles} done: {up}/{len(self.results)} up")
            if cycle + 1 < cycles:
                await asyncio.sleep(self.config.poll_interval_seconds)
        return self.results


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Probe a list of endpoints and report up/down status",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  netmon --endpoints endpoints.json
  netmon --endpoints endpoints.json --cycles 5 --output out/results.json
        """
    )
    parser.add_argument('--endpoints', required=True, help='JSON file with a list of endpoint configs')
    parser.add_argument('--cycles', type=int, default=1, help='Number of poll cycles to run (default: 1)')
    parser.add_argument('--output', help='Write merged results to this JSON file')
    parser.add_argument('--log-level', default=None, help='Override LOG_LEVEL')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    try:
        config = Config()
        setup_logging(log_file=config.log_file, level=args.log_level or config.log_level)
        logger.info(f"Effective config: {config.to_dict()}")

        endpoints = load_endpoints(Path(args.endpoints))
        runner = MonitorRunner(config)
        results = asyncio.run(runner.run(endpoints, max(1, args.cycles)))

        if args.output:
            write_json(Path(args.output), results_to_rows(results))

        up = sum(1 for r in results.values() if r['is_up'])
        print(f"\n✓ {len(results)} endpoints checked, {up} up")
        for row in results_to_rows(results):
            marker = "UP  " if row['is_up'] else "DOWN"
            print(f"  [{marker}] {row['monitor_ip_id']}: {row['message']}")
        if args.output:
            print(f"  Output: {args.output}")
        return 0

    except (ValueError, FileNotFoundError) as e:
        print(f"\n✗ Configuration error: {e}")
        return 1

    except KeyboardInterrupt:
        print("\n\n✗ Interrupted by user")
        return 130

    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        print(f"\n✗ Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
