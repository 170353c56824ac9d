"""Register clients and run weight submission rounds against the simulated ledger.

Loads client accounts and per-round NMSE weights from CSV, optionally
registers every client first, submits every client's weight each round,
reconciles each round against the ledger read-back, and writes CSV
metrics and logs under the output directory.

Example:
    python scripts/run_rounds.py --config configs/rounds.yaml \\
        --accounts accounts.csv --weights weights.csv --rounds 50
    python scripts/run_rounds.py --mode register --accounts accounts.csv
"""

import argparse
import asyncio
import os
import signal
import sys
from decimal import Decimal

from tabulate import tabulate

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from fedledger.clients import CsvIdentityProvider, CsvValueSource
from fedledger.config import ConfigManager, OrchestratorConfig
from fedledger.errors import ConfigurationError
from fedledger.ledger import InMemoryLedger
from fedledger.logging import LogLevel, setup_logging, close_logging
from fedledger.metrics import CompositeSink, CsvMetricsSink, MetricsCollector
from fedledger.orchestration import SubmissionOrchestrator


def build_ledger(config: ConfigManager) -> InMemoryLedger:
    """Create the simulated ledger from the 'ledger' config section"""
    latency = config.get('ledger.latency', [0.0, 0.0])
    return InMemoryLedger(
        gas_price_gwei=Decimal(str(config.get('ledger.gas_price_gwei', 30))),
        base_gas=int(config.get('ledger.base_gas', 52_000)),
        registration_gas=int(config.get('ledger.registration_gas', 46_000)),
        gas_jitter=int(config.get('ledger.gas_jitter', 4_000)),
        latency=(float(latency[0]), float(latency[1])),
        failure_rate=float(config.get('ledger.failure_rate', 0.0)),
        seed=config.get('ledger.seed')
    )


async def run(orchestrator, mode, start_round, end_round, provider, values, ledger, sink):
    """Register and/or run rounds, stopping gracefully on Ctrl-C"""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.request_stop)
    except NotImplementedError:
        pass  # Windows event loops

    registration = None
    if mode in ('register', 'all'):
        registration = await orchestrator.register_clients(provider, ledger, sink)
        if mode == 'register' or orchestrator.cancelled:
            return registration, []
    results = await orchestrator.run_rounds(start_round, end_round, provider, values, ledger, sink)
    return registration, results


def main():
    parser = argparse.ArgumentParser(description='Register clients and run ledger weight submission rounds')
    parser.add_argument('--config', type=str, default=None,
                        help='YAML/JSON configuration file')
    parser.add_argument('--mode', choices=['register', 'submit', 'all'], default=None,
                        help='register clients, submit rounds, or both (overrides config)')
    parser.add_argument('--accounts', type=str, default=None,
                        help='Accounts CSV (Address, Private Key)')
    parser.add_argument('--weights', type=str, default=None,
                        help='Weights CSV (one row per round, "Client {i} NMSE" columns)')
    parser.add_argument('--start-round', type=int, default=None,
                        help='First round (overrides config)')
    parser.add_argument('--rounds', type=int, default=None,
                        help='Number of rounds (overrides config)')
    parser.add_argument('--clients', type=int, default=None,
                        help='Use only the first N accounts')
    parser.add_argument('--output-dir', type=str, default=None,
                        help='Output directory')
    parser.add_argument('--failure-rate', type=float, default=None,
                        help='Simulated transient failure rate (overrides config)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Simulated ledger seed (overrides config)')
    parser.add_argument('--verbose', action='store_true',
                        help='Print verbose output')
    args = parser.parse_args()

    # Load configuration
    config = ConfigManager(args.config)
    config.load_env()
    for key, value in (
        ('run.mode', args.mode),
        ('run.accounts', args.accounts),
        ('run.weights', args.weights),
        ('run.start_round', args.start_round),
        ('run.rounds', args.rounds),
        ('run.clients', args.clients),
        ('output.dir', args.output_dir),
        ('ledger.failure_rate', args.failure_rate),
        ('ledger.seed', args.seed),
    ):
        if value is not None:
            config.set(key, value)

    output_dir = config.get('output.dir', 'outputs')
    logger = setup_logging(
        log_dir=os.path.join(output_dir, 'logs'),
        level=LogLevel.DEBUG if args.verbose else LogLevel.INFO
    )

    try:
        mode = config.get('run.mode', 'submit')
        if mode not in ('register', 'submit', 'all'):
            raise ConfigurationError(f"run.mode must be register, submit or all, got {mode!r}")
        accounts = config.get('run.accounts')
        weights = config.get('run.weights')
        if not accounts:
            raise ConfigurationError("An accounts file is required")
        if mode != 'register' and not weights:
            raise ConfigurationError("A weights file is required to submit rounds")

        orchestrator_config = OrchestratorConfig.from_manager(config)
        start_round = int(config.get('run.start_round', 1))
        end_round = start_round + int(config.get('run.rounds', 50)) - 1
    except (ConfigurationError, ValueError) as e:
        logger.error(f"Configuration error: {e}")
        close_logging()
        sys.exit(2)

    provider = CsvIdentityProvider(accounts, limit=config.get('run.clients'))
    values = None
    if mode != 'register':
        values = CsvValueSource(
            weights,
            column_template=config.get('run.weight_column', 'Client {index} NMSE'),
            scale=float(config.get('run.weight_scale', 1000))
        )
    ledger = build_ledger(config)
    collector = MetricsCollector()
    sink = CompositeSink([collector, CsvMetricsSink(os.path.join(output_dir, 'metrics'))])

    if mode != 'register':
        logger.info(f"Submitting rounds {start_round}..{end_round}")
    logger.info(f"Orchestrator config: {orchestrator_config.to_dict()}")

    orchestrator = SubmissionOrchestrator(config=orchestrator_config)
    try:
        registration, results = asyncio.run(
            run(orchestrator, mode, start_round, end_round, provider, values, ledger, sink)
        )
    except (ConfigurationError, KeyError, FileNotFoundError) as e:
        logger.error(f"Cannot start run: {e}")
        close_logging()
        sys.exit(2)
    finally:
        sink.close()
        collector.export_csv(os.path.join(output_dir, 'metrics', 'attempts_summary.csv'), table='attempts')

    # Print summary
    rows = [
        ['reg' if r is registration else r.round_num, r.committed, r.already_recorded,
         r.failed, r.skipped, len(r.inconsistencies),
         'yes' if r.degraded else 'no', r.total_gas_used, f"{r.duration:.2f}"]
        for r in ([registration] if registration else []) + results
    ]
    print(tabulate(
        rows,
        headers=['Round', 'Committed', 'Already', 'Failed', 'Skipped', 'Inconsistent',
                 'Degraded', 'Gas', 'Seconds'],
        tablefmt='grid'
    ))

    summary = collector.get_summary()
    print("\n" + "=" * 50)
    print("SUBMISSION RUN COMPLETE" if not orchestrator.cancelled else "SUBMISSION RUN STOPPED")
    print("=" * 50)
    if registration is not None:
        print(f"Registered:        {registration.committed} "
              f"({registration.already_recorded} already registered)")
    print(f"Rounds:            {len(results)}")
    print(f"Committed:         {sum(r.committed for r in results)}")
    print(f"Failed:            {sum(r.failed for r in results)}")
    print(f"Attempts sent:     {summary['total_attempts']}")
    print(f"Retries:           {summary['retries']}")
    print(f"Avg latency:       {summary['avg_latency']:.3f}s")
    print(f"Total gas:         {summary['total_gas_used']}")
    print(f"Total cost:        {summary['total_cost']:.6f}")
    print("=" * 50)

    close_logging()
    return results


if __name__ == '__main__':
    main()
