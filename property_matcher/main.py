"""Main entry point for the Property Matcher service."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from property_matcher.config.environment import EnvironmentConfig
from property_matcher.config.exceptions import ConfigurationError
from property_matcher.config.loader import load_config
from property_matcher.config.models import AppConfig
from property_matcher.logging import get_logger
from property_matcher.logging.config import configure_logging
from property_matcher.persistence.database import close_database, init_database
from property_matcher.pipeline import MatchingPipeline
from property_matcher.scheduler import RecurrenceScheduler, SchedulerService

logger = get_logger(__name__, component="cli")


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Log level priority: CLI > environment > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level or "INFO"

    return app_config, env_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Property Matcher - scores listings against buyer requirements and dispatches alerts"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml, then config/config.yaml)",
    )
    parser.add_argument(
        "--manual-run",
        action="store_true",
        help="Run all due schedules once and exit",
    )
    parser.add_argument(
        "--ingest",
        nargs="*",
        metavar="LISTING_ID",
        default=None,
        help="Match new listings against all profiles once and exit "
        "(no ids: listings published within the ingestion lookback window)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the Property Matcher.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        environment = os.environ.get("ENVIRONMENT", app_config.logging.environment)
        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=environment,
        )

        logger.info(
            "Property Matcher starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else "default",
                "log_level": env_config.log_level,
                "manual_run": args.manual_run,
                "ingest": args.ingest is not None,
            },
        )

        init_database(env_config.database_url)

        logger.info(
            "Configuration loaded",
            extra={
                "event": "config.loaded",
                "region_count": len(app_config.regions),
                "tick_interval_minutes": app_config.scheduler.tick_interval_minutes,
                "smtp_enabled": env_config.smtp_enabled,
                "drafting_enabled": app_config.drafting.enabled and env_config.textgen_enabled,
                "log_format": app_config.logging.format,
            },
        )

        pipeline = MatchingPipeline.from_config(app_config, env_config)
        scheduler = RecurrenceScheduler(
            runner=pipeline.run_schedule,
            default_timezone=app_config.scheduler.default_timezone,
        )

        if args.ingest is not None:
            result = pipeline.run_for_listings(args.ingest or None)
            logger.info(
                f"Ingestion completed: {result.listing_count} listings, "
                f"{result.profile_count} profiles, {result.total_alerts} alerts, "
                f"{result.total_notified} notified",
                extra={
                    "event": "service.ingest.completed",
                    "duration_seconds": result.total_duration_seconds,
                    "had_errors": result.had_errors,
                },
            )
            _stop(pipeline, start_time)
            return 1 if result.had_errors else 0

        if args.manual_run:
            report = scheduler.run_due()
            logger.info(
                f"Manual run completed: {report.due_count} due, {report.succeeded} succeeded, "
                f"{report.failed} failed, {report.skipped} skipped",
                extra={"event": "service.manual_run.completed", "had_errors": report.had_errors},
            )
            _stop(pipeline, start_time)
            return 1 if report.had_errors else 0

        # Daemon mode
        shutdown_event = threading.Event()
        scheduler_service = SchedulerService(
            tick_callable=scheduler.run_due,
            interval_minutes=app_config.scheduler.tick_interval_minutes,
            shutdown_event=shutdown_event,
        )

        def signal_handler(signum, frame):
            logger.info(
                f"Received signal {signum}, shutting down",
                extra={"event": "service.signal_received", "signal": signum},
            )
            scheduler_service.shutdown(wait=False)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        scheduler_service.start()
        logger.info(
            "Scheduler started. Press Ctrl+C to stop",
            extra={"event": "service.daemon_mode.started"},
        )

        try:
            shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info(
                "Keyboard interrupt received, shutting down",
                extra={"event": "service.keyboard_interrupt"},
            )
            scheduler_service.shutdown(wait=False)

        _stop(pipeline, start_time)
        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1


def _stop(pipeline: MatchingPipeline, start_time: float) -> None:
    pipeline.close()
    close_database()
    logger.info(
        "Property Matcher stopped",
        extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
    )


if __name__ == "__main__":
    sys.exit(main())
