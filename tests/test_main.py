"""Unit tests for the main entry point.

Tests the main() function including:
- CLI argument parsing
- Configuration loading with priority (CLI > env > config)
- Ingestion and manual run modes vs daemon mode
- Exit code handling
- Error handling
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from property_matcher.config.environment import EnvironmentConfig
from property_matcher.config.exceptions import ConfigurationError
from property_matcher.config.models import AppConfig, LoggingConfig
from property_matcher.main import build_parser, load_runtime_config, main
from property_matcher.pipeline.models import PipelineRunResult
from property_matcher.scheduler.models import ScheduleRunOutcome, ScheduleRunReport

from tests.helpers import FIXED_NOW


@pytest.fixture
def configs():
    return AppConfig(), EnvironmentConfig(log_level="INFO")


@pytest.fixture
def service_mocks(configs):
    """Patch everything main() wires together."""
    with patch("property_matcher.main.load_runtime_config", return_value=configs) as load, patch(
        "property_matcher.main.configure_logging"
    ) as configure_logging, patch("property_matcher.main.init_database") as init_db, patch(
        "property_matcher.main.close_database"
    ) as close_db, patch(
        "property_matcher.main.MatchingPipeline"
    ) as pipeline_cls, patch(
        "property_matcher.main.RecurrenceScheduler"
    ) as scheduler_cls, patch(
        "property_matcher.main.SchedulerService"
    ) as service_cls, patch(
        "signal.signal"
    ):
        yield {
            "load": load,
            "configure_logging": configure_logging,
            "init_db": init_db,
            "close_db": close_db,
            "pipeline": pipeline_cls.from_config.return_value,
            "scheduler": scheduler_cls.return_value,
            "scheduler_cls": scheduler_cls,
            "service": service_cls.return_value,
            "service_cls": service_cls,
        }


def run_result(had_errors=False):
    return PipelineRunResult(
        run_id="run-1",
        run_started_at=FIXED_NOW,
        run_finished_at=FIXED_NOW,
        listing_count=2,
        had_errors=had_errors,
    )


class TestBuildParser:
    def test_defaults(self):
        args = build_parser().parse_args([])

        assert args.config is None
        assert args.manual_run is False
        assert args.ingest is None
        assert args.log_level is None

    def test_ingest_without_ids(self):
        assert build_parser().parse_args(["--ingest"]).ingest == []

    def test_ingest_with_ids(self):
        args = build_parser().parse_args(["--ingest", "lst-1", "lst-2", "--config", "custom.yaml"])

        assert args.ingest == ["lst-1", "lst-2"]
        assert args.config == Path("custom.yaml")

    def test_rejects_unknown_log_level(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--log-level", "TRACE"])


class TestLoadRuntimeConfig:
    """Log level priority: CLI > env > config."""

    def test_log_level_priority(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        app_config = AppConfig(logging=LoggingConfig(level="WARNING"))
        env_config = EnvironmentConfig(log_level="INFO")

        with patch("property_matcher.main.load_config", return_value=(app_config, env_config)):
            _, env = load_runtime_config(config_file, "DEBUG")
            assert env.log_level == "DEBUG"

            env_config.log_level = "INFO"
            _, env = load_runtime_config(config_file, None)
            assert env.log_level == "INFO"

            env_config.log_level = None
            _, env = load_runtime_config(config_file, None)
            assert env.log_level == "WARNING"

    def test_configuration_error_propagates(self, tmp_path):
        with patch(
            "property_matcher.main.load_config",
            side_effect=ConfigurationError("Config file not found"),
        ):
            with pytest.raises(ConfigurationError):
                load_runtime_config(tmp_path / "missing.yaml", None)


class TestMain:
    """Test suite for main() function."""

    def test_ingest_recent_listings(self, service_mocks):
        service_mocks["pipeline"].run_for_listings.return_value = run_result()

        exit_code = main(["--ingest"])

        assert exit_code == 0
        service_mocks["pipeline"].run_for_listings.assert_called_once_with(None)
        service_mocks["init_db"].assert_called_once_with(EnvironmentConfig().database_url)
        service_mocks["close_db"].assert_called_once()
        service_mocks["pipeline"].close.assert_called_once()
        service_mocks["scheduler"].run_due.assert_not_called()

    def test_ingest_explicit_ids(self, service_mocks):
        service_mocks["pipeline"].run_for_listings.return_value = run_result()

        main(["--ingest", "lst-1", "lst-2"])

        service_mocks["pipeline"].run_for_listings.assert_called_once_with(["lst-1", "lst-2"])

    def test_ingest_with_errors(self, service_mocks):
        service_mocks["pipeline"].run_for_listings.return_value = run_result(had_errors=True)

        assert main(["--ingest"]) == 1

    def test_manual_run_success(self, service_mocks):
        service_mocks["scheduler"].run_due.return_value = ScheduleRunReport(
            started_at=FIXED_NOW,
            finished_at=FIXED_NOW,
            outcomes=[ScheduleRunOutcome(schedule_id=1, profile_id="prof-1", status="completed")],
        )

        exit_code = main(["--manual-run"])

        assert exit_code == 0
        service_mocks["scheduler"].run_due.assert_called_once_with()
        service_mocks["configure_logging"].assert_called_once()
        service_mocks["close_db"].assert_called_once()
        service_mocks["service"].start.assert_not_called()

    def test_manual_run_with_failures(self, service_mocks):
        service_mocks["scheduler"].run_due.return_value = ScheduleRunReport(
            started_at=FIXED_NOW,
            finished_at=FIXED_NOW,
            outcomes=[
                ScheduleRunOutcome(schedule_id=1, profile_id="prof-1", status="completed"),
                ScheduleRunOutcome(schedule_id=2, profile_id="prof-2", status="failed", error="boom"),
            ],
        )

        assert main(["--manual-run"]) == 1

    def test_scheduler_wired_to_pipeline(self, service_mocks, configs):
        service_mocks["scheduler"].run_due.return_value = ScheduleRunReport(FIXED_NOW, FIXED_NOW)

        main(["--manual-run"])

        service_mocks["scheduler_cls"].assert_called_once_with(
            runner=service_mocks["pipeline"].run_schedule,
            default_timezone=configs[0].scheduler.default_timezone,
        )

    def test_daemon_mode(self, service_mocks):
        # Simulate immediate shutdown so the test doesn't hang
        service_mocks["service"].start.side_effect = KeyboardInterrupt()

        exit_code = main([])

        assert exit_code == 0
        service_mocks["service"].start.assert_called_once()
        kwargs = service_mocks["service_cls"].call_args.kwargs
        assert kwargs["tick_callable"] == service_mocks["scheduler"].run_due
        assert kwargs["interval_minutes"] == 60

    def test_configuration_error(self):
        with patch(
            "property_matcher.main.load_runtime_config",
            side_effect=ConfigurationError("Config file not found", suggestions=["Create config.yaml"]),
        ):
            assert main(["--config", "nonexistent.yaml"]) == 1

    def test_keyboard_interrupt(self):
        with patch("property_matcher.main.load_runtime_config", side_effect=KeyboardInterrupt()):
            assert main([]) == 0

    def test_fatal_startup_error(self, service_mocks):
        service_mocks["init_db"].side_effect = RuntimeError("disk full")

        assert main(["--manual-run"]) == 1
        service_mocks["scheduler"].run_due.assert_not_called()

    def test_log_level_passed_through(self, service_mocks):
        service_mocks["scheduler"].run_due.return_value = ScheduleRunReport(FIXED_NOW, FIXED_NOW)

        main(["--manual-run", "--log-level", "DEBUG"])

        args = service_mocks["load"].call_args[0]
        assert args[1] == "DEBUG"
