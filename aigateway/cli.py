"""
Command-line interface for the AI Gateway.

Provides commands for:
- Listing configured providers and credential availability
- Cost analytics per device
- Listing and resolving cost alerts
- Testing a provider connection
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import Optional

from aigateway.adapter import ProtocolAdapter
from aigateway.config import GatewaySettings
from aigateway.cost_control import CostGovernor
from aigateway.registry import ProviderRegistry
from aigateway.storage import InMemoryStorage, SQLiteStorage

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("aigateway")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _settings(args) -> GatewaySettings:
    settings = GatewaySettings.from_env()
    if args.db:
        settings = replace(settings, db_path=args.db)
    return settings


def _governor(args) -> CostGovernor:
    settings = _settings(args)
    storage = SQLiteStorage(settings.db_path) if settings.db_path else InMemoryStorage()
    return CostGovernor(
        storage,
        timezone_name=settings.timezone,
        fail_open_on_ledger_error=settings.fail_open_on_ledger_error,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_providers(args) -> int:
    """List enabled providers and their models."""
    with ProtocolAdapter(ProviderRegistry.from_catalog()) as adapter:
        providers = adapter.available_providers()

    if args.json:
        _print_json(providers)
        return 0

    print("\n" + "=" * 60)
    print("AI PROVIDERS")
    print("=" * 60)
    for provider_id, info in providers.items():
        status = "ready" if info["available"] else "no API key"
        print(f"\n{info['name']} ({provider_id}) [{info['wire_format']}] - {status}")
        for model in info["models"]:
            marker = "*" if model["is_default"] else " "
            print(
                f"  {marker} {model['id']:<32} "
                f"in ${model['input_price_per_token'] * 1_000_000:.3f}/1M  "
                f"out ${model['output_price_per_token'] * 1_000_000:.3f}/1M"
            )
    print("=" * 60)
    return 0


def cmd_usage(args) -> int:
    """Show cost analytics for a device."""
    analytics = _governor(args).cost_analytics(args.device, days=args.days)

    if args.json:
        _print_json(analytics)
        return 0

    summary, current = analytics["summary"], analytics["current"]
    print("\n" + "=" * 60)
    print(f"COST ANALYTICS: {args.device} (last {summary['period']})")
    print("=" * 60)
    print(f"Total Cost: ${summary['total_cost']:.6f}")
    print(f"Requests: {summary['total_requests']}")
    print(f"Tokens: {summary['total_tokens']:,}")
    print(f"Avg Cost/Request: ${summary['average_cost_per_request']:.6f}")
    print(f"Today: ${current['today_cost']:.6f} ({current['today_requests']} requests)")
    print(f"This Month: ${current['monthly_cost']:.6f} ({current['monthly_requests']} requests)")

    if analytics["by_provider"]:
        print()
        print("-" * 60)
        print("BY PROVIDER")
        print("-" * 60)
        for entry in analytics["by_provider"]:
            print(
                f"  {entry['provider']}/{entry['model']}: ${entry['cost']:.6f} "
                f"({entry['requests']} requests, {entry['tokens']:,} tokens)"
            )
    print("=" * 60)
    return 0


def cmd_alerts(args) -> int:
    """List unresolved cost alerts."""
    alerts = _governor(args).unresolved_alerts(args.device)

    if args.json:
        _print_json([{"id": a.alert_id, "device": a.device_id, **a.formatted()} for a in alerts])
        return 0

    if not alerts:
        print("No unresolved alerts.")
        return 0

    for alert in alerts:
        info = alert.formatted()
        print(
            f"{alert.alert_id}  {alert.device_id}  {info['type']} {info['period']}: "
            f"{info['current_cost']} of {info['limit_amount']}"
        )
    return 0


def cmd_resolve(args) -> int:
    """Resolve a cost alert."""
    if _governor(args).resolve_alert(args.alert_id):
        print(f"Resolved alert {args.alert_id}")
        return 0
    print(f"Alert {args.alert_id} not found or already resolved", file=sys.stderr)
    return 1


def cmd_test_provider(args) -> int:
    """Send a connectivity prompt to a provider."""
    settings = _settings(args)
    with ProtocolAdapter(
        ProviderRegistry.from_catalog(),
        timeout_s=settings.request_timeout_s,
    ) as adapter:
        report = adapter.test_provider(args.provider, args.model)

    if args.json:
        _print_json(report)
    elif report["success"]:
        print(f"OK {report['provider']}/{report['model']} in {report['latency_ms']}ms: {report['response']}")
    else:
        print(f"FAILED {report['provider']}: {report['error']}", file=sys.stderr)
    return 0 if report["success"] else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aigateway",
        description="AI Gateway - multi-provider replies with per-device cost control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List providers and whether their API keys are set
  aigateway providers

  # Cost analytics for a device over the last week
  aigateway --db gateway.db usage device-1 --days 7

  # Unresolved alerts, then resolve one
  aigateway --db gateway.db alerts --device device-1
  aigateway --db gateway.db resolve 3f2a...

  # Check a provider end to end
  aigateway test-provider gemini --model gemini-1.5-flash
""",
    )
    parser.add_argument("--db", help="SQLite database path (default: $AIGATEWAY_DB_PATH)")
    parser.add_argument("--json", action="store_true", help="Print JSON output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("providers", help="List providers and models")

    usage_parser = subparsers.add_parser("usage", help="Cost analytics for a device")
    usage_parser.add_argument("device", help="Device ID")
    usage_parser.add_argument("--days", "-d", type=int, default=30,
                              help="Number of days to analyze")

    alerts_parser = subparsers.add_parser("alerts", help="List unresolved cost alerts")
    alerts_parser.add_argument("--device", help="Only alerts for this device")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a cost alert")
    resolve_parser.add_argument("alert_id", help="Alert ID")

    test_parser = subparsers.add_parser("test-provider", help="Test a provider connection")
    test_parser.add_argument("provider", help="Provider ID")
    test_parser.add_argument("--model", "-m", help="Model ID (default: provider default)")

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    _configure_logging(args.verbose)

    commands = {
        "providers": cmd_providers,
        "usage": cmd_usage,
        "alerts": cmd_alerts,
        "resolve": cmd_resolve,
        "test-provider": cmd_test_provider,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
