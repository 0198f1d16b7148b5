"""TenderDesk CLI entry point."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from tenderdesk import __version__
from tenderdesk.config import get_settings
from tenderdesk.context import AppContext, build_context

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# TenderDesk Configuration
# Operational parameters only. Connection strings and tokens belong in .env.

snapshot:
  default_time: "18:00"
  daily_reset_time: "06:52"
  workday_minutes: 480
  retry_delay_minutes: 15
  cleanup_interval_minutes: 30
  holiday_weekdays: [4]   # 0 = Monday ... 6 = Sunday

kanban:
  high_priority_threshold: 750000
  medium_priority_threshold: 400000

activity:
  max_activities: 100

pricing:
  vat_rate: 0.15

api:
  host: "0.0.0.0"
  port: 8000
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from tenderdesk.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def _run_with_context(func) -> int:
    """Build the app context, run an async command against it, then close it."""

    async def run() -> int:
        settings = get_settings()
        if settings.store_backend == "memory":
            logger.warning("STORE_BACKEND is memory: this command runs against an empty, throwaway store")
            print("\n⚠ STORE_BACKEND=memory: nothing is read from or saved to a shared store\n")
        ctx = build_context(settings)
        try:
            return await func(ctx)
        finally:
            await ctx.close()

    return asyncio.run(run())


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory and configuration files."""
    data_dir = Path(args.data_dir).resolve()

    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created data directory: {data_dir}")

        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        from tenderdesk.storage.preferences import PreferenceStore

        preferences = PreferenceStore(data_dir / "preferences.yaml")
        if not preferences.path.exists():
            preferences.update_timer_settings()
            logger.info(f"Created preferences: {preferences.path}")

        print(f"\n✓ Data directory initialized at {data_dir}")
        print("\nNext steps:")
        print("1. Create .env with STORE_BACKEND, MONGODB_URL and COMPANY_ID")
        print("2. Review data/config.yaml if needed")
        print("3. Run 'python -m tenderdesk config' to verify configuration")
        print("4. Run 'python -m tenderdesk serve' to start the API\n")
        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== TenderDesk Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Environment: {settings.environment}")
        print(f"Timezone: {settings.timezone}")
        print(f"Company: {settings.company_id or '✗ Not set'}\n")

        print("Store:")
        print(f"  Backend: {settings.store_backend}")
        if settings.store_backend == "mongo":
            from tenderdesk.storage.mongo import _sanitize_mongodb_url

            print(f"  URL: {_sanitize_mongodb_url(settings.mongodb_url)}")
            print(f"  Database: {settings.mongodb_database}")
        print()

        snap = settings.snapshot
        print("Snapshots:")
        print(f"  Default Time: {snap.default_time}")
        print(f"  Daily Reset: {snap.daily_reset_time}")
        print(f"  Workday: {snap.workday_minutes} min")
        print(f"  Retry Delay: {snap.retry_delay_minutes} min")
        print(f"  Cleanup Interval: {snap.cleanup_interval_minutes} min")
        print(f"  Holiday Weekdays: {snap.holiday_weekdays}\n")

        print("Kanban Priority:")
        print(f"  High: > {settings.kanban.high_priority_threshold:,.0f}")
        print(f"  Medium: >= {settings.kanban.medium_priority_threshold:,.0f}\n")

        print(f"VAT Rate: {settings.pricing.vat_rate:.0%}")
        print(f"Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")
        return 0

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        print(f"\n❌ Configuration error: {e}\n")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Show snapshot scheduler and duplicate status."""

    async def run(ctx: AppContext) -> int:
        status = ctx.scheduler.get_status()
        report = await ctx.snapshots.analyze_duplicates()
        latest = await ctx.snapshots.get_all_snapshots()

        print("\n=== Snapshot Status ===\n")
        print(f"Configured Time: {status['snapshot_time']}")
        print(f"Today: {status['service']['today']}")
        print(f"Snapshots: {report.total_snapshots} stored, {len(latest)} latest per employee and day")
        print(f"Duplicates: {report.duplicate_count}\n")
        return 0

    try:
        return _run_with_context(run)
    except Exception as e:
        logger.error(f"Status failed: {e}")
        print(f"\n❌ Status failed: {e}\n")
        return 1


def cmd_snapshot(args: argparse.Namespace) -> int:
    """Run a manual snapshot batch."""
    _init_logfire()

    async def run(ctx: AppContext) -> int:
        result = await ctx.snapshots.create_manual_snapshot(
            employee_id=args.employee, force_duplicates=args.force
        )
        if result.aborted:
            print(f"\n⚠ Snapshot aborted: {result.reason}\n")
            return 1
        print(f"\n✓ Snapshot {result.date}: {result.created_count} created, {result.skipped} skipped")
        for snapshot in result.created:
            print(f"  {snapshot.employee_name or snapshot.employee_id}: {snapshot.duration} ({snapshot.percentage}%)")
        print()
        return 0

    try:
        return _run_with_context(run)
    except Exception as e:
        logger.error(f"Snapshot failed: {e}")
        print(f"\n❌ Snapshot failed: {e}\n")
        return 1


def cmd_absent(args: argparse.Namespace) -> int:
    """Record absence snapshots for employees with no login today."""

    async def run(ctx: AppContext) -> int:
        created = await ctx.snapshots.create_absent_snapshots(args.company)
        print(f"\n✓ {len(created)} absence snapshots recorded\n")
        return 0

    try:
        return _run_with_context(run)
    except Exception as e:
        logger.error(f"Absence detection failed: {e}")
        print(f"\n❌ Absence detection failed: {e}\n")
        return 1


def cmd_dedupe(args: argparse.Namespace) -> int:
    """Remove duplicate snapshots and tracking entries."""

    async def run(ctx: AppContext) -> int:
        snapshots = await ctx.snapshots.remove_duplicate_snapshots()
        tracking = await ctx.tracking.remove_duplicate_tracking_entries()
        print(f"\n✓ Removed {snapshots} duplicate snapshots and {tracking} duplicate tracking entries\n")
        return 0

    try:
        return _run_with_context(run)
    except Exception as e:
        logger.error(f"Dedup failed: {e}")
        print(f"\n❌ Dedup failed: {e}\n")
        return 1


def cmd_analyze(args: argparse.Namespace) -> int:
    """Print duplicate snapshot groups."""

    async def run(ctx: AppContext) -> int:
        report = await ctx.snapshots.analyze_duplicates()
        print(f"\nTotal snapshots: {report.total_snapshots}")
        print(f"Unique employee/date pairs: {report.unique_pairs}")
        print(f"Duplicate groups: {len(report.duplicate_groups)}\n")
        for group in report.duplicate_groups:
            print(f"  {group.employee_id} {group.date}: {group.count} snapshots")
        return 0

    try:
        return _run_with_context(run)
    except Exception as e:
        logger.error(f"Analysis failed: {e}")
        print(f"\n❌ Analysis failed: {e}\n")
        return 1


def cmd_scheduler(args: argparse.Namespace) -> int:
    """Run the daily snapshot scheduler until interrupted."""
    _init_logfire()

    async def run(ctx: AppContext) -> int:
        ctx.scheduler.start()
        if not ctx.scheduler.running:
            print("\n⚠ Snapshot capture is disabled in timer settings\n")
            return 1
        logger.info("Press Ctrl+C to stop\n")
        await asyncio.Event().wait()
        return 0

    try:
        return _run_with_context(run)
    except (KeyboardInterrupt, SystemExit):
        logger.info("\nReceived interrupt signal")
        logger.info("✓ Scheduler stopped cleanly")
        return 0
    except Exception as e:
        logger.error(f"Scheduler failed: {e}")
        print(f"\n❌ Scheduler failed: {e}\n")
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API with uvicorn."""
    _init_logfire()
    try:
        import uvicorn

        from tenderdesk.api.server import create_app

        settings = get_settings()
        app = create_app(build_context(settings), start_scheduler=not args.no_scheduler)
        uvicorn.run(
            app,
            host=args.host or settings.api.host,
            port=args.port or settings.api.port,
        )
        return 0
    except Exception as e:
        logger.error(f"Server failed: {e}")
        print(f"\n❌ Server failed: {e}\n")
        return 1


def main() -> int:
    parser = argparse.ArgumentParser(
        description="TenderDesk: tender tracking and daily time-tracking snapshots",
        prog="python -m tenderdesk",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    init_parser = subparsers.add_parser("init", help="Initialize data directory")
    init_parser.add_argument("--data-dir", default="data", help="Data directory path")
    init_parser.set_defaults(func=cmd_init)

    config_parser = subparsers.add_parser("config", help="Show merged configuration")
    config_parser.set_defaults(func=cmd_config)

    status_parser = subparsers.add_parser("status", help="Show snapshot status")
    status_parser.set_defaults(func=cmd_status)

    snapshot_parser = subparsers.add_parser("snapshot", help="Run a manual snapshot batch")
    snapshot_parser.add_argument("--employee", default=None, help="Only snapshot this employee id")
    snapshot_parser.add_argument(
        "--force", action="store_true", help="Write even if today's snapshot exists"
    )
    snapshot_parser.set_defaults(func=cmd_snapshot)

    absent_parser = subparsers.add_parser("absent", help="Record absence snapshots")
    absent_parser.add_argument("--company", default=None, help="Company id (defaults to COMPANY_ID)")
    absent_parser.set_defaults(func=cmd_absent)

    dedupe_parser = subparsers.add_parser("dedupe", help="Remove duplicate snapshots and tracking entries")
    dedupe_parser.set_defaults(func=cmd_dedupe)

    analyze_parser = subparsers.add_parser("analyze", help="Report duplicate snapshots")
    analyze_parser.set_defaults(func=cmd_analyze)

    scheduler_parser = subparsers.add_parser("scheduler", help="Run the snapshot scheduler")
    scheduler_parser.set_defaults(func=cmd_scheduler)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument(
        "--no-scheduler", action="store_true", help="Do not run the snapshot scheduler in-process"
    )
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
