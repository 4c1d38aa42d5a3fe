"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


class CriteriaWeights(BaseModel):
    """Weight table for the scored criteria.

    A criterion with weight 0 is still evaluated and reported, but it neither
    adds to nor dilutes the score.
    """

    budget: float = Field(30, ge=0)
    location: float = Field(25, ge=0)
    property_type: float = Field(20, ge=0)
    bedrooms: float = Field(15, ge=0)
    listing_intent: float = Field(10, ge=0)
    area: float = Field(10, ge=0)
    bathrooms: float = Field(5, ge=0)

    def as_dict(self) -> Dict[str, float]:
        return self.model_dump()


class ScoringConfig(BaseModel):
    """Tolerances and partial-credit ratios used by the criteria evaluator."""

    tolerance: float = Field(
        0.15, ge=0, le=1, description="Relative band around a violated range bound for partial credit"
    )
    budget_partial_ratio: float = Field(0.5, ge=0, le=1)
    location_partial_ratio: float = Field(0.4, ge=0, le=1)
    bedrooms_partial_ratio: float = Field(0.5, ge=0, le=1)
    area_partial_ratio: float = Field(0.5, ge=0, le=1)
    bedrooms_slack: int = Field(
        1, ge=0, le=5, description="Bedrooms outside the range that still earn partial credit"
    )
    neutral_score: int = Field(
        50, ge=0, le=100, description="Score reported when no criterion is specified"
    )


class DispatchThresholds(BaseModel):
    """Score thresholds that drive the dispatcher for one trigger context."""

    low: int = Field(60, ge=0, le=100, description="Minimum score to alert and notify")
    high: int = Field(70, ge=0, le=100, description="Minimum score to draft a message")

    @model_validator(mode="after")
    def validate_order(self):
        if self.high <= self.low:
            raise ValueError(
                f"high threshold ({self.high}) must be greater than low threshold ({self.low})"
            )
        return self


class RunPolicy(BaseModel):
    """How a single trigger context runs the matching pipeline."""

    low_threshold: int = Field(60, ge=0, le=100)
    high_threshold: int = Field(70, ge=0, le=100)
    limit: int = Field(5, ge=1, le=100, description="Maximum ranked candidates per profile")
    notify_handler: bool = Field(True, description="Notify the assigned handler on new alerts")
    draft_messages: bool = Field(True, description="Draft outbound messages for strong matches")
    suppress_dismissed: bool = Field(
        True, description="Skip pairs the handler already dismissed"
    )
    dispatch: bool = Field(True, description="Create alerts; False ranks only")

    @model_validator(mode="after")
    def validate_thresholds(self):
        if self.high_threshold <= self.low_threshold:
            raise ValueError(
                f"high_threshold ({self.high_threshold}) must be greater than "
                f"low_threshold ({self.low_threshold})"
            )
        return self

    def thresholds(self) -> DispatchThresholds:
        return DispatchThresholds(low=self.low_threshold, high=self.high_threshold)

    def with_min_score(self, min_score: int) -> "RunPolicy":
        """Copy of this policy reporting from ``min_score`` upwards.

        The draft threshold is raised when needed so it stays above the new floor.

        Raises:
            ValueError: If min_score is outside 0-99
        """
        if not 0 <= min_score < 100:
            raise ValueError(f"min_score must be between 0 and 99, got {min_score}")
        high = max(self.high_threshold, min_score + 1)
        return self.model_copy(update={"low_threshold": min_score, "high_threshold": high})


class PoliciesConfig(BaseModel):
    """Run policies per trigger context."""

    ingestion: RunPolicy = Field(
        default_factory=lambda: RunPolicy(low_threshold=60, high_threshold=70, limit=10)
    )
    scheduled_report: RunPolicy = Field(
        default_factory=lambda: RunPolicy(low_threshold=60, high_threshold=80, limit=5)
    )
    dashboard: RunPolicy = Field(
        default_factory=lambda: RunPolicy(
            low_threshold=50, high_threshold=70, limit=5, dispatch=False
        )
    )


class SchedulerConfig(BaseModel):
    """Recurring schedule runner settings."""

    tick_interval_minutes: int = Field(
        60, ge=1, le=1440, description="How often due schedules are checked"
    )
    default_timezone: str = Field("UTC", description="Timezone for schedules that omit one")

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        stripped = v.strip()
        if stripped.upper() == "UTC":
            return "UTC"
        try:
            ZoneInfo(stripped)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return stripped


class DraftingConfig(BaseModel):
    """Outbound message drafting through the text-generation service."""

    enabled: bool = Field(True, description="Request drafts for strong matches")
    timeout_seconds: float = Field(
        20.0, gt=0, le=300, description="Upper bound on waiting for one draft"
    )
    language: str = Field("Portuguese (Portugal)", min_length=1)
    max_body_chars: int = Field(1200, ge=100, le=10000)

    @field_validator("language")
    @classmethod
    def strip_language(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("language cannot be empty")
        return stripped


class EmailConfig(BaseModel):
    """Report e-mail settings."""

    use_tls: bool = Field(True, description="Use TLS/STARTTLS for secure connection")
    max_retries: int = Field(
        3, ge=0, le=10, description="Number of retry attempts for failed email sends"
    )
    retry_backoff_multiplier: float = Field(
        2.0, ge=1.0, le=5.0, description="Exponential backoff multiplier for retries"
    )
    retry_initial_delay: int = Field(
        5, ge=1, le=60, description="Initial retry delay in seconds"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )
    environment: str = Field("local", description="Environment label stamped on records")

    model_config = {"use_enum_values": True}


class AdvancedConfig(BaseModel):
    """Advanced runtime settings."""

    max_listings_per_run: int = Field(
        500, ge=1, le=100000, description="Active listings evaluated per profile and run"
    )
    ingestion_lookback_hours: int = Field(
        24, ge=1, le=24 * 30, description="Window for 'new' listings when no ids are given"
    )
    max_alerts_per_listing: int = Field(
        10, ge=1, le=1000, description="Alerts created per new listing on ingestion"
    )
    http_request_timeout: int = Field(
        30, ge=5, le=300, description="Request timeout for text-generation calls (seconds)"
    )
    user_agent: str = Field(
        "PropertyMatcher/1.0",
        min_length=1,
        description="User-Agent string for HTTP requests",
    )

    @field_validator("user_agent")
    @classmethod
    def strip_user_agent(cls, v: str) -> str:
        """Strip whitespace from user agent."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("user_agent cannot be empty")
        return stripped


class AppConfig(BaseModel):
    """Root configuration object for the property matcher."""

    weights: CriteriaWeights = Field(default_factory=CriteriaWeights)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    regions: Dict[str, List[str]] = Field(
        default_factory=dict, description="Administrative region -> localities"
    )
    policies: PoliciesConfig = Field(default_factory=PoliciesConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    drafting: DraftingConfig = Field(default_factory=DraftingConfig)
    email: EmailConfig = Field(default_factory=EmailConfig, description="Email settings")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    advanced: AdvancedConfig = Field(
        default_factory=AdvancedConfig, description="Advanced runtime settings"
    )

    @field_validator("regions")
    @classmethod
    def clean_regions(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        """Strip region and locality names, dropping blanks."""
        cleaned: Dict[str, List[str]] = {}
        for region, localities in v.items():
            name = str(region).strip()
            if not name:
                raise ValueError("Region names cannot be empty")
            cleaned[name] = [str(loc).strip() for loc in localities or [] if str(loc).strip()]
        return cleaned

    @model_validator(mode="after")
    def validate_weights(self):
        if sum(self.weights.as_dict().values()) <= 0:
            raise ValueError("At least one criterion weight must be greater than zero")
        return self
