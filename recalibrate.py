#!/usr/bin/env python3
"""
Recalibration CLI
=================

Runs the adaptive ensemble-weighting engine against the outcome database.

Each tick:
1. Reads settled outcomes per algorithm over the short, medium and long windows
2. Scores each algorithm's short-term health (0-100)
3. Pauses/resumes algorithms with hysteresis
4. Reallocates weights within the per-tick rate limit
5. Recalibrates confidence multipliers and minimum confidence thresholds
6. Publishes the whole weight set at once to the weight store

Usage:
    # Run one tick and print the result
    python recalibrate.py --once

    # Run the periodic loop (Ctrl+C to stop)
    python recalibrate.py --serve

    # Show current weights
    python recalibrate.py --show

    # Show trust for one algorithm
    python recalibrate.py --trust f4ce9fdc-c41a-4a5c-9f18-5d732674c5b8

    # Reset to neutral defaults
    python recalibrate.py --reset

Examples:
    # Use a config file and a scratch store
    python recalibrate.py --once --config recal.env --store memory

    # Point at another outcome database
    python recalibrate.py --once --db /tmp/predictions.db

    # Keep a JSON lines record of every alert
    python recalibrate.py --serve --alert-log data/alerts.jsonl
"""

import argparse
import dataclasses
import sys
import time

from core.config import CalibrationConfig, ServiceConfig
from core.constants import get_algorithm_name
from core.exceptions import ConfigurationError, RecalibrationError
from core.logging_config import configure_logging


def print_header(title: str):
    """Print a formatted header."""
    print("\n" + "=" * 60)
    print(f"  {title}")
    print("=" * 60)


def print_section(title: str):
    """Print a section header."""
    print(f"\n{title}")
    print("-" * 40)


def build_service(args) -> ServiceConfig:
    service = ServiceConfig.load(args.config)
    overrides = {}
    if args.db:
        overrides['outcome_db_path'] = args.db
    if args.store:
        overrides['weight_store_backend'] = args.store
    if args.alert_log:
        overrides['alert_log_path'] = args.alert_log
    return dataclasses.replace(service, **overrides) if overrides else service


def build_store(service: ServiceConfig):
    from calibration import create_weight_store
    return create_weight_store(service.weight_store_backend, service.weights_path)


def build_orchestrator(service: ServiceConfig, config: CalibrationConfig, store):
    from calibration import RecalibrationOrchestrator
    from core.alerts import create_default_manager
    from data import SqliteOutcomeStore

    source = SqliteOutcomeStore(service.outcome_db_path, timeout=service.fetch_timeout_seconds)
    alerts = create_default_manager(
        console=True,
        log_file=service.alert_log_path or None,
        webhook_url=service.alert_webhook_url or None,
    )
    return RecalibrationOrchestrator(source, store, config, service, alert_manager=alerts)


def print_weights(store) -> bool:
    snapshot = store.snapshot()
    if snapshot.is_empty:
        print("\nNo recalibration published yet. Consumers get neutral defaults.")
        return False

    result = snapshot.result
    print(f"\nVersion:        {snapshot.version}")
    if snapshot.published_at:
        print(f"Published:      {snapshot.published_at.isoformat()}")
    if result:
        print(f"Overall health: {result.overall_health_score}")

    print_section("MODEL WEIGHTS")
    print(f"{'Algorithm':<22} {'Weight':>8} {'Mult':>7} {'MinConf':>8} {'Health':>7} {'Status':<8}")
    print("-" * 66)
    for w in snapshot.weights:
        status = "PAUSED" if w.is_paused else "active"
        print(
            f"{get_algorithm_name(w.algorithm_id):<22} "
            f"{w.adjusted_weight:>8.3f} "
            f"{w.confidence_multiplier:>7.3f} "
            f"{w.min_confidence_threshold:>8.1f} "
            f"{w.health_score:>7} "
            f"{status:<8}"
        )
    return True


def print_result(result) -> None:
    print_section("PERFORMANCE (short-term window)")
    print(f"{'Algorithm':<22} {'Settled':>8} {'Win %':>7} {'AvgConf':>8} {'Streak':>7} {'Quality':<18}")
    print("-" * 74)
    for window in result.algorithm_performance:
        win_rate = f"{window.win_rate:.1%}" if window.win_rate is not None else "---"
        streak = f"{window.streak.type or '-'}{window.streak.length}"
        print(
            f"{get_algorithm_name(window.algorithm_id):<22} "
            f"{window.sample_size:>8} "
            f"{win_rate:>7} "
            f"{window.avg_confidence:>8.1f} "
            f"{streak:>7} "
            f"{window.quality:<18}"
        )

    if result.actions_taken:
        print_section("ACTIONS")
        for action in result.actions_taken:
            print(f"  [{action.type.value}] {get_algorithm_name(action.algorithm_id)}: {action.reason}")

    if result.recommendations:
        print_section("RECOMMENDATIONS")
        for note in result.recommendations:
            print(f"  - {note}")


def run_once(service: ServiceConfig, config: CalibrationConfig) -> bool:
    """Run a single tick."""
    print_header("RECALIBRATION TICK")

    store = build_store(service)
    orchestrator = build_orchestrator(service, config, store)
    result = orchestrator.run_tick()
    if result is None:
        print(f"\nTick did not publish: {orchestrator.last_failure or 'skipped'}")
        print("Last-known-good weights are unchanged.")
        return False

    print_result(result)
    print_weights(store)
    return True


def run_serve(service: ServiceConfig, config: CalibrationConfig) -> bool:
    """Run the periodic loop until interrupted."""
    print_header("RECALIBRATION SERVICE")
    print(f"\nTick every {service.tick_interval_seconds:g}s, budget {service.tick_timeout_seconds:g}s")
    print(f"Outcome DB:   {service.outcome_db_path}")
    print(f"Weight store: {service.weight_store_backend} ({service.weights_path})")

    store = build_store(service)
    orchestrator = build_orchestrator(service, config, store)
    orchestrator.start()
    try:
        while orchestrator.is_running:
            time.sleep(1)
    finally:
        orchestrator.stop(timeout=service.tick_timeout_seconds)
    return True


def run_show(service: ServiceConfig) -> bool:
    """Show the latest published weights."""
    print_header("CURRENT WEIGHTS")
    store = build_store(service)
    shown = print_weights(store)
    result = store.snapshot().result
    if shown and result and result.bin_calibration:
        bins = result.bin_calibration
        print_section("CONFIDENCE BINS")
        print(f"  Calibrated:      {'Yes' if bins.is_calibrated else 'No'}")
        print(f"  Overall factor:  {bins.overall_adjustment:.3f}")
        print(f"  Adjusted bins:   {len(bins.adjusted_bins)}")
    return True


def run_trust(service: ServiceConfig, algorithm_id: str) -> bool:
    """Show trust for one algorithm."""
    from calibration import TrustQuery

    print_header(f"TRUST: {get_algorithm_name(algorithm_id)}")
    trust = TrustQuery(build_store(service), service.algorithm_ids, service.stale_after_minutes)
    info = trust.get_trust(algorithm_id)
    summary = trust.summary()

    print(f"\n  Trusted:            {'Yes' if info.trusted else 'No (paused)'}")
    print(f"  Weight:             {info.weight:.3f}")
    print(f"  Multiplier:         {info.confidence_multiplier:.3f}")
    print(f"  Min confidence:     {info.min_confidence:.1f}")
    print(f"  Health score:       {info.health_score}")
    if info.is_default:
        print("  (neutral default: no recalibration published yet)")
    elif summary.is_stale:
        print(f"  (stale: last update over {service.stale_after_minutes} minutes ago)")
    return True


def run_reset(service: ServiceConfig, assume_yes: bool = False) -> bool:
    """Reset to neutral defaults by clearing the weight store."""
    print_header("RESET WEIGHTS")
    store = build_store(service)
    if store.snapshot().is_empty:
        print("\nNo published weights to reset. Already using neutral defaults.")
        return True

    if not assume_yes:
        confirm = input("Clear all published weights? (y/N): ").strip().lower()
        if confirm != 'y':
            print("Cancelled.")
            return False

    store.clear()
    print("Weights cleared. Consumers will use neutral defaults.")
    return True


def main():
    parser = argparse.ArgumentParser(
        description='Adaptive ensemble recalibration',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python recalibrate.py --once               # Run one tick
  python recalibrate.py --serve              # Run the periodic loop
  python recalibrate.py --show               # Show current weights
  python recalibrate.py --trust <id>         # Trust for one algorithm
  python recalibrate.py --reset              # Reset to neutral defaults
        """
    )

    # Actions
    action_group = parser.add_mutually_exclusive_group(required=True)
    action_group.add_argument('--once', action='store_true', help='Run one recalibration tick')
    action_group.add_argument('--serve', action='store_true', help='Run the periodic loop')
    action_group.add_argument('--show', action='store_true', help='Show current weights')
    action_group.add_argument('--trust', metavar='ALGORITHM_ID', help='Show trust for one algorithm')
    action_group.add_argument('--reset', action='store_true', help='Clear published weights')

    # Options
    parser.add_argument('--config', help='.env or .json config file (overrides environment)')
    parser.add_argument('--db', help='Outcome SQLite database path')
    parser.add_argument('--store', choices=['memory', 'json'], help='Weight store backend')
    parser.add_argument('--alert-log', help='Append alerts to this JSON lines file')
    parser.add_argument('--yes', action='store_true', help='With --reset: skip confirmation')

    args = parser.parse_args()
    configure_logging()

    try:
        service = build_service(args)
        config = CalibrationConfig.load(args.config)
    except ConfigurationError as e:
        print(f"\nInvalid configuration: {e}")
        sys.exit(2)

    success = False
    try:
        if args.once:
            success = run_once(service, config)
        elif args.serve:
            success = run_serve(service, config)
        elif args.show:
            success = run_show(service)
        elif args.trust:
            success = run_trust(service, args.trust)
        elif args.reset:
            success = run_reset(service, args.yes)
    except KeyboardInterrupt:
        print("\n\nStopped.")
        sys.exit(0 if args.serve else 1)
    except RecalibrationError as e:
        print(f"\nError: {e}")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
