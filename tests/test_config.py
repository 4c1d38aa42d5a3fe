"""Tests for configuration loading and validation."""

import warnings
from pathlib import Path

import pytest
import yaml

from property_matcher.config import (
    AppConfig,
    ConfigurationError,
    load_config,
    load_environment_config,
    parse_config,
)
from property_matcher.config.models import (
    CriteriaWeights,
    DispatchThresholds,
    RunPolicy,
    SchedulerConfig,
)
from property_matcher.config.validators import check_for_warnings

EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "config.example.yaml"


@pytest.fixture
def minimal_config_dict():
    return {"regions": {"Lisboa": ["Lisboa", "Cascais"]}}


class TestDefaults:
    def test_default_weight_table(self):
        weights = CriteriaWeights()
        assert weights.as_dict() == {
            "budget": 30,
            "location": 25,
            "property_type": 20,
            "bedrooms": 15,
            "listing_intent": 10,
            "area": 10,
            "bathrooms": 5,
        }

    def test_default_policies(self):
        config = AppConfig()
        assert config.policies.ingestion.thresholds() == DispatchThresholds(low=60, high=70)
        assert config.policies.scheduled_report.thresholds() == DispatchThresholds(low=60, high=80)
        assert config.policies.dashboard.thresholds() == DispatchThresholds(low=50, high=70)
        assert config.policies.dashboard.dispatch is False

    def test_default_scoring(self):
        config = AppConfig()
        assert config.scoring.tolerance == 0.15
        assert config.scoring.neutral_score == 50


class TestThresholds:
    def test_high_must_exceed_low(self):
        with pytest.raises(ValueError):
            DispatchThresholds(low=70, high=70)

    def test_policy_high_must_exceed_low(self):
        with pytest.raises(ValueError):
            RunPolicy(low_threshold=80, high_threshold=60)

    def test_with_min_score_lowers_floor(self):
        policy = RunPolicy(low_threshold=60, high_threshold=80)
        adjusted = policy.with_min_score(40)
        assert (adjusted.low_threshold, adjusted.high_threshold) == (40, 80)

    def test_with_min_score_raises_draft_threshold(self):
        policy = RunPolicy(low_threshold=60, high_threshold=80)
        adjusted = policy.with_min_score(85)
        assert (adjusted.low_threshold, adjusted.high_threshold) == (85, 86)

    def test_with_min_score_at_top(self):
        adjusted = RunPolicy().with_min_score(99)
        assert (adjusted.low_threshold, adjusted.high_threshold) == (99, 100)

    @pytest.mark.parametrize("min_score", [100, -1])
    def test_with_min_score_out_of_range(self, min_score):
        with pytest.raises(ValueError, match="min_score"):
            RunPolicy().with_min_score(min_score)


class TestParseConfig:
    def test_minimal(self, minimal_config_dict):
        config = parse_config(minimal_config_dict)
        assert config.regions == {"Lisboa": ["Lisboa", "Cascais"]}

    def test_regions_are_cleaned(self):
        config = parse_config({"regions": {" Porto ": [" Maia ", "", "Porto"]}})
        assert config.regions == {"Porto": ["Maia", "Porto"]}

    def test_empty_config_rejected(self):
        with pytest.raises(ConfigurationError, match="empty"):
            parse_config({})

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationError, match="mapping"):
            parse_config(["not", "a", "mapping"])

    def test_all_zero_weights_rejected(self):
        zero = {k: 0 for k in CriteriaWeights().as_dict()}
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            with pytest.raises(ConfigurationError):
                parse_config({"weights": zero})

    def test_errors_are_numbered_and_path_qualified(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"policies": {"ingestion": {"low_threshold": 150}}})
        error = exc_info.value
        assert any("policies -> ingestion -> low_threshold" in e for e in error.errors)
        assert "1." in str(error)
        assert error.suggestions

    def test_invalid_timezone_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_config({"scheduler": {"default_timezone": "Mars/Olympus"}})

    def test_scheduler_timezone_accepts_iana(self):
        assert SchedulerConfig(default_timezone="Europe/Lisbon").default_timezone == "Europe/Lisbon"

    def test_example_config_is_valid(self):
        with open(EXAMPLE_CONFIG, encoding="utf-8") as f:
            config = parse_config(yaml.safe_load(f))
        assert config.policies.scheduled_report.limit == 5
        assert "Lisboa" in config.regions


class TestWarnings:
    def test_zero_weight_warning(self):
        messages = check_for_warnings({"weights": {"bathrooms": 0}})
        assert any("bathrooms" in m for m in messages)

    def test_locality_in_two_regions(self):
        messages = check_for_warnings({"regions": {"A": ["Sintra"], "B": ["sintra"]}})
        assert any("Sintra" in m for m in messages)

    def test_low_threshold_warning(self):
        messages = check_for_warnings({"policies": {"ingestion": {"low_threshold": 30}}})
        assert any("ingestion" in m for m in messages)

    def test_clean_config_has_no_warnings(self, minimal_config_dict):
        assert check_for_warnings(minimal_config_dict) == []

    def test_parse_config_emits_user_warning(self):
        with pytest.warns(UserWarning, match="weight 0"):
            parse_config({"weights": {"bathrooms": 0}})


class TestEnvironment:
    def test_empty_environment(self):
        env = load_environment_config({})
        assert env.database_url == "sqlite:///./data/property_matcher.db"
        assert env.smtp_enabled is False
        assert env.textgen_enabled is False
        assert env.smtp_port == 587

    def test_full_smtp(self):
        env = load_environment_config(
            {
                "SMTP_HOST": "smtp.example.com",
                "SMTP_PORT": "465",
                "SMTP_USER": "bot@example.com",
                "SMTP_PASS": "secret",
                "TEXTGEN_API_URL": "https://llm.example.com/v1/generate",
                "LOG_LEVEL": "debug",
            }
        )
        assert env.smtp_enabled is True
        assert env.smtp_port == 465
        assert env.textgen_enabled is True
        assert env.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "environ, fragment",
        [
            ({"SMTP_HOST": "h", "SMTP_PORT": "abc"}, "SMTP_PORT"),
            ({"SMTP_HOST": "h", "SMTP_PORT": "70000"}, "SMTP_PORT"),
            ({"SMTP_USER": "a@example.com", "SMTP_PASS": "x"}, "SMTP_HOST"),
            ({"SMTP_HOST": "h", "SMTP_USER": "a@example.com"}, "SMTP_PASS"),
            ({"TEXTGEN_API_URL": "ftp://llm"}, "TEXTGEN_API_URL"),
            ({"LOG_LEVEL": "LOUD"}, "LOG_LEVEL"),
        ],
    )
    def test_invalid_environment(self, environ, fragment):
        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config(environ)
        assert any(fragment in e for e in exc_info.value.errors)


class TestLoadConfig:
    def test_load_from_explicit_path(self, tmp_path, monkeypatch, minimal_config_dict):
        for name in ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS", "LOG_LEVEL", "TEXTGEN_API_URL"):
            monkeypatch.delenv(name, raising=False)
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump(minimal_config_dict), encoding="utf-8")

        app_config, env_config = load_config(config_file)
        assert app_config.regions["Lisboa"] == ["Lisboa", "Cascais"]
        assert env_config.smtp_enabled is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("regions: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="YAML"):
            load_config(config_file)

    def test_fallback_to_config_directory(self, tmp_path, monkeypatch, minimal_config_dict):
        for name in ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS", "LOG_LEVEL", "TEXTGEN_API_URL"):
            monkeypatch.delenv(name, raising=False)
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "config.yaml").write_text(
            yaml.safe_dump(minimal_config_dict), encoding="utf-8"
        )
        monkeypatch.chdir(tmp_path)
        app_config, _ = load_config()
        assert "Lisboa" in app_config.regions
