"""Data models for pipeline execution tracking and reporting."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from property_matcher.matching.models import RankingResult


@dataclass
class ProfileRunStats:
    """
    Statistics for one profile's run through the pipeline.

    Attributes:
        profile_id: Profile that was evaluated
        trigger: What started the run (ingestion, schedule, run_now, dashboard)
        evaluated_count: Listings scored for this profile
        candidate_count: Listings at or above the run's minimum score
        pair_error_count: Listings whose evaluation failed
        alerts_created: New alerts created
        already_alerted: Matches that already had an open alert
        suppressed_count: Matches skipped because the handler dismissed them
        notified_count: Handler notifications delivered
        drafted_count: Drafted messages stored on alerts
        draft_failures: Drafting requests that failed or timed out
        notify_failures: Handler notifications that failed
        dispatch_errors: Pairs whose dispatch failed and was rolled back, as
            "<listing_id>: <error>"
        report_status: sent / failed / skipped, when a report e-mail was due
        duration_seconds: Time spent on this profile
        skipped: The run was skipped because the profile was already running
        had_errors: Whether any errors occurred during processing
        error_message: Error message if the run failed
        ranking: Ranked candidates, when the run produced them
    """

    profile_id: str
    trigger: str
    evaluated_count: int = 0
    candidate_count: int = 0
    pair_error_count: int = 0
    alerts_created: int = 0
    already_alerted: int = 0
    suppressed_count: int = 0
    notified_count: int = 0
    drafted_count: int = 0
    draft_failures: int = 0
    notify_failures: int = 0
    dispatch_errors: List[str] = field(default_factory=list)
    report_status: Optional[str] = None
    duration_seconds: float = 0.0
    skipped: bool = False
    had_errors: bool = False
    error_message: Optional[str] = None
    ranking: Optional[RankingResult] = None


@dataclass
class PipelineRunResult:
    """
    Aggregate results from an ingestion run over many profiles.

    Attributes:
        run_id: Identifier shared by every alert batch of this run
        run_started_at: UTC timestamp when the run began
        run_finished_at: UTC timestamp when the run completed
        total_duration_seconds: Total time for the entire run
        listing_count: New listings considered
        profile_count: Profiles evaluated
        total_evaluated: Pairs scored
        total_alerts: Alerts created
        total_notified: Handler notifications delivered
        total_errors: Errors encountered (pair, profile and collaborator)
        capped_listings: Listings that hit the per-listing alert cap
        profile_stats: Per-profile execution statistics
        had_errors: Whether any profile encountered errors
        skipped: Whether the run was skipped
    """

    run_id: str
    run_started_at: datetime
    run_finished_at: datetime
    total_duration_seconds: float = 0.0
    listing_count: int = 0
    profile_count: int = 0
    total_evaluated: int = 0
    total_alerts: int = 0
    total_notified: int = 0
    total_errors: int = 0
    capped_listings: int = 0
    profile_stats: List[ProfileRunStats] = field(default_factory=list)
    had_errors: bool = False
    skipped: bool = False

    def __post_init__(self):
        """Compute aggregate statistics from profile stats if not already set."""
        if self.profile_stats and self.total_evaluated == 0:
            self.profile_count = len(self.profile_stats)
            self.total_evaluated = sum(s.evaluated_count for s in self.profile_stats)
            self.total_alerts = sum(s.alerts_created for s in self.profile_stats)
            self.total_notified = sum(s.notified_count for s in self.profile_stats)
            self.total_errors = sum(
                s.pair_error_count
                + len(s.dispatch_errors)
                + s.draft_failures
                + s.notify_failures
                + (1 if s.error_message else 0)
                for s in self.profile_stats
            )
            self.had_errors = self.had_errors or any(s.had_errors for s in self.profile_stats)

        if self.total_duration_seconds == 0.0:
            delta = self.run_finished_at - self.run_started_at
            self.total_duration_seconds = delta.total_seconds()
