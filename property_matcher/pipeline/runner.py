"""Pipeline orchestration for matching, dispatch and scheduled reports."""

import threading
import time
from collections import defaultdict
from contextlib import AbstractContextManager
from datetime import timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from property_matcher.config.environment import EnvironmentConfig
from property_matcher.config.models import AppConfig, RunPolicy
from property_matcher.dispatch.drafting import MessageDrafter
from property_matcher.dispatch.exceptions import DispatchError
from property_matcher.dispatch.models import DispatchOutcome, DispatchStatus, DraftedMessage
from property_matcher.dispatch.service import ActionDispatcher
from property_matcher.domain.models import Listing, RequirementProfile, Schedule
from property_matcher.logging import get_logger
from property_matcher.logging.context import log_context
from property_matcher.matching.exceptions import MatchingError
from property_matcher.matching.models import MatchResult, RankingResult
from property_matcher.matching.scoring import ScoreAggregator, rank_candidates
from property_matcher.notifications.mailer import ReportMailer
from property_matcher.notifications.service import NotificationService
from property_matcher.persistence.database import get_session
from property_matcher.persistence.exceptions import PersistenceError, RecordNotFoundError
from property_matcher.persistence.repositories import (
    ListingRepository,
    MatchAlertRepository,
    NotificationRepository,
    ProfileRepository,
)
from property_matcher.textgen.client import HTTPTextGenerator
from property_matcher.utils.timestamps import utc_now

from .models import PipelineRunResult, ProfileRunStats

logger = get_logger(__name__, component="pipeline")


class MatchingPipeline:
    """
    Runs profiles through ranking and dispatch.

    Every trigger (new-listing ingestion, scheduled report, manual run, dashboard
    preview) goes through the same ranking code and differs only in its
    RunPolicy. Runs for the same profile are serialised with a non-blocking
    per-profile lock: an overlapping run is skipped and reported, never queued.
    """

    def __init__(
        self,
        app_config: AppConfig,
        aggregator: Optional[ScoreAggregator] = None,
        drafter: Optional[MessageDrafter] = None,
        report_mailer: Optional[ReportMailer] = None,
        session_factory: Callable[[], AbstractContextManager] = get_session,
        clock: Callable = utc_now,
    ):
        """
        Initialize the pipeline.

        Args:
            app_config: Application configuration
            aggregator: Score aggregator (built from app_config if None)
            drafter: Message drafter (drafting disabled if None)
            report_mailer: Report mailer (report e-mails disabled if None)
            session_factory: Context manager yielding a database session
            clock: Returns the current UTC time
        """
        self.app_config = app_config
        self.aggregator = aggregator or ScoreAggregator.from_config(app_config)
        self.drafter = drafter
        self.report_mailer = report_mailer
        self.session_factory = session_factory
        self.clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, app_config: AppConfig, env_config: EnvironmentConfig) -> "MatchingPipeline":
        """Build a pipeline with the collaborators the environment enables."""
        drafter = None
        if app_config.drafting.enabled and env_config.textgen_enabled:
            generator = HTTPTextGenerator(
                env_config.textgen_api_url,
                api_key=env_config.textgen_api_key,
                timeout=app_config.advanced.http_request_timeout,
                user_agent=app_config.advanced.user_agent,
            )
            drafter = MessageDrafter(
                generator,
                language=app_config.drafting.language,
                timeout_seconds=app_config.drafting.timeout_seconds,
                max_body_chars=app_config.drafting.max_body_chars,
            )
        elif app_config.drafting.enabled:
            logger.info(
                "Message drafting disabled: TEXTGEN_API_URL not set",
                extra={"event": "pipeline.drafting.disabled"},
            )

        mailer = ReportMailer(env_config, app_config.email) if env_config.smtp_enabled else None
        return cls(app_config, drafter=drafter, report_mailer=mailer)

    def close(self) -> None:
        if self.drafter is not None:
            self.drafter.close()

    # Locking

    def _profile_lock(self, profile_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(profile_id, threading.Lock())

    def is_running(self, profile_id: str) -> bool:
        return self._profile_lock(profile_id).locked()

    # Triggers

    def run_for_profile(
        self,
        profile_id: str,
        policy: Optional[RunPolicy] = None,
        trigger: str = "run_now",
        batch_id: Optional[str] = None,
        send_report: bool = False,
        schedule_name: Optional[str] = None,
    ) -> ProfileRunStats:
        """
        Rank active listings for one profile and dispatch the candidates.

        Args:
            profile_id: Profile to run
            policy: Run policy (defaults to the scheduled_report policy)
            trigger: Label stored on created alerts
            batch_id: Alert batch id (a fresh id if None)
            send_report: E-mail the ranked candidates to the buyer afterwards
            schedule_name: Schedule name shown in the report

        Returns:
            ProfileRunStats; failures are captured, not raised
        """
        policy = policy or self.app_config.policies.scheduled_report
        batch_id = batch_id or uuid4().hex
        stats = ProfileRunStats(profile_id=profile_id, trigger=trigger)

        lock = self._profile_lock(profile_id)
        if not lock.acquire(blocking=False):
            with log_context(run_id=batch_id, profile_id=profile_id):
                logger.warning(
                    "Profile run skipped: previous run still in progress",
                    extra={"event": "pipeline.run.skipped", "reason": "lock_held", "trigger": trigger},
                )
            stats.skipped = True
            return stats

        start = time.time()
        try:
            with log_context(run_id=batch_id, profile_id=profile_id):
                logger.info(
                    f"Profile run started ({trigger})",
                    extra={
                        "event": "pipeline.run.started",
                        "trigger": trigger,
                        "min_score": policy.low_threshold,
                        "limit": policy.limit,
                    },
                )
                try:
                    profile, ranking, listings_by_id = self._rank_and_dispatch(
                        profile_id, policy, batch_id, trigger, stats
                    )
                except (PersistenceError, SQLAlchemyError, MatchingError) as e:
                    logger.error(
                        f"Profile run failed: {e}",
                        exc_info=True,
                        extra={"event": "pipeline.run.failed", "error_type": type(e).__name__},
                    )
                    stats.had_errors = True
                    stats.error_message = str(e)
                else:
                    if send_report and profile is not None:
                        self._send_report(profile, ranking, listings_by_id, schedule_name, stats)

                stats.duration_seconds = time.time() - start
                self._log_stats(stats)
                return stats
        finally:
            lock.release()

    def run_schedule(self, schedule: Schedule, trigger: str = "schedule") -> ProfileRunStats:
        """Run a schedule's profile with the scheduled_report policy and its min_score."""
        policy = self.app_config.policies.scheduled_report.with_min_score(schedule.min_score)
        return self.run_for_profile(
            schedule.profile_id,
            policy,
            trigger=trigger,
            batch_id=f"schedule-{schedule.id}-{uuid4().hex}",
            send_report=schedule.send_email,
            schedule_name=schedule.name,
        )

    def preview(
        self, profile_id: str, min_score: Optional[int] = None, limit: Optional[int] = None
    ) -> RankingResult:
        """
        Rank candidates for the dashboard without creating alerts.

        Raises:
            RecordNotFoundError: If the profile does not exist
            InvalidMatchInputError: If min_score or limit are out of range
        """
        policy = self.app_config.policies.dashboard
        with self.session_factory() as session:
            profile = ProfileRepository(session).require(profile_id)
            listings = self._active_listings(session)

        return rank_candidates(
            self.aggregator,
            profile,
            listings,
            min_score=policy.low_threshold if min_score is None else min_score,
            limit=limit or policy.limit,
            max_evaluated=self.app_config.advanced.max_listings_per_run,
            computed_at=self.clock(),
        )

    def run_for_listings(self, listing_ids: Optional[Iterable[str]] = None) -> PipelineRunResult:
        """
        Match new listings against every eligible profile.

        Listings are the explicit ``listing_ids``, or the active listings
        published within ``advanced.ingestion_lookback_hours``. Eligible
        profiles are non-archived profiles with at least one criterion. Each
        listing raises at most ``advanced.max_alerts_per_listing`` alerts in a
        run, best scores first.

        Returns:
            PipelineRunResult with per-profile statistics
        """
        run_started_at = self.clock()
        run_id = uuid4().hex
        policy = self.app_config.policies.ingestion

        with log_context(run_id=run_id):
            try:
                with self.session_factory() as session:
                    listings = self._ingestion_listings(session, listing_ids, run_started_at)
                    profiles = ProfileRepository(session).filter(with_criteria=True)
            except PersistenceError as e:
                logger.error(
                    f"Ingestion run failed while loading records: {e}",
                    exc_info=True,
                    extra={"event": "pipeline.ingestion.failed"},
                )
                return PipelineRunResult(
                    run_id=run_id,
                    run_started_at=run_started_at,
                    run_finished_at=self.clock(),
                    total_errors=1,
                    had_errors=True,
                )

            logger.info(
                f"Ingestion run started: {len(listings)} listing(s), {len(profiles)} profile(s)",
                extra={
                    "event": "pipeline.ingestion.started",
                    "listing_count": len(listings),
                    "profile_count": len(profiles),
                },
            )

            rankings: Dict[str, Tuple[RequirementProfile, RankingResult]] = {}
            profile_stats: List[ProfileRunStats] = []
            for profile in profiles:
                stats = ProfileRunStats(profile_id=profile.id, trigger="ingestion")
                try:
                    ranking = rank_candidates(
                        self.aggregator,
                        profile,
                        listings,
                        min_score=policy.low_threshold,
                        limit=policy.limit,
                        max_evaluated=self.app_config.advanced.max_listings_per_run,
                        computed_at=run_started_at,
                    )
                except MatchingError as e:
                    stats.had_errors = True
                    stats.error_message = str(e)
                    profile_stats.append(stats)
                    continue
                self._apply_ranking(stats, ranking)
                rankings[profile.id] = (profile, ranking)
                profile_stats.append(stats)

            kept, capped = self._cap_per_listing(
                [r for _, ranking in rankings.values() for r in ranking.candidates]
            )

            listings_by_id = {l.id: l for l in listings}
            for stats in profile_stats:
                if stats.profile_id not in rankings:
                    continue
                profile, _ = rankings[stats.profile_id]
                results = kept.get(profile.id, [])
                if results:
                    self._dispatch_locked(profile, results, listings_by_id, policy, run_id, stats)

            result = PipelineRunResult(
                run_id=run_id,
                run_started_at=run_started_at,
                run_finished_at=self.clock(),
                listing_count=len(listings),
                capped_listings=capped,
                profile_stats=profile_stats,
            )
            result.profile_count = len(profile_stats)

            logger.info(
                "Ingestion run completed",
                extra={
                    "event": "pipeline.ingestion.completed",
                    "duration_ms": int(result.total_duration_seconds * 1000),
                    "listing_count": result.listing_count,
                    "profile_count": result.profile_count,
                    "total_evaluated": result.total_evaluated,
                    "total_alerts": result.total_alerts,
                    "total_notified": result.total_notified,
                    "total_errors": result.total_errors,
                    "capped_listings": capped,
                },
            )
            return result

    # Internals

    def _active_listings(self, session: Session) -> List[Listing]:
        return ListingRepository(session).list_active(limit=self.app_config.advanced.max_listings_per_run)

    def _ingestion_listings(self, session: Session, listing_ids, now) -> List[Listing]:
        repo = ListingRepository(session)
        if listing_ids is not None:
            return [l for l in repo.get_many(listing_ids) if l.is_active]
        since = now - timedelta(hours=self.app_config.advanced.ingestion_lookback_hours)
        return repo.list_active(
            limit=self.app_config.advanced.max_listings_per_run, published_since=since
        )

    def _rank_and_dispatch(
        self, profile_id: str, policy: RunPolicy, batch_id: str, trigger: str, stats: ProfileRunStats
    ):
        with self.session_factory() as session:
            profile = ProfileRepository(session).get(profile_id)
            if profile is None:
                raise RecordNotFoundError(f"Profile {profile_id} not found")
            if profile.archived:
                logger.info(
                    "Profile is archived, nothing to do",
                    extra={"event": "pipeline.run.archived"},
                )
                return None, None, {}

            listings = self._active_listings(session)

        ranking = rank_candidates(
            self.aggregator,
            profile,
            listings,
            min_score=policy.low_threshold,
            limit=policy.limit,
            max_evaluated=self.app_config.advanced.max_listings_per_run,
            computed_at=self.clock(),
        )
        self._apply_ranking(stats, ranking)
        listings_by_id = {l.id: l for l in listings}

        if policy.dispatch and ranking.candidates:
            self._dispatch_batch(profile, ranking.candidates, listings_by_id, policy, batch_id, trigger, stats)

        return profile, ranking, listings_by_id

    def _dispatch_locked(
        self,
        profile: RequirementProfile,
        results: List[MatchResult],
        listings_by_id: Dict[str, Listing],
        policy: RunPolicy,
        batch_id: str,
        stats: ProfileRunStats,
    ) -> None:
        lock = self._profile_lock(profile.id)
        if not lock.acquire(blocking=False):
            logger.warning(
                f"Ingestion dispatch skipped for profile {profile.id}: run in progress",
                extra={"event": "pipeline.run.skipped", "reason": "lock_held", "profile_id": profile.id},
            )
            stats.skipped = True
            return

        start = time.time()
        try:
            with log_context(profile_id=profile.id):
                self._dispatch_batch(profile, results, listings_by_id, policy, batch_id, "ingestion", stats)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(
                f"Ingestion dispatch failed for profile {profile.id}: {e}",
                exc_info=True,
                extra={"event": "pipeline.run.failed", "profile_id": profile.id},
            )
            stats.had_errors = True
            stats.error_message = str(e)
        finally:
            stats.duration_seconds = time.time() - start
            lock.release()

    def _dispatch_batch(
        self,
        profile: RequirementProfile,
        results: List[MatchResult],
        listings_by_id: Dict[str, Listing],
        policy: RunPolicy,
        batch_id: str,
        trigger: str,
        stats: ProfileRunStats,
    ) -> None:
        """
        Dispatch one profile's results, then draft messages for the strong ones.

        Each pair runs in its own SAVEPOINT: a failing pair is rolled back
        alone and recorded in ``stats.dispatch_errors`` while the others
        commit. Drafting waits on the text generator, so it runs only after
        the dispatch transaction has committed.

        Raises:
            PersistenceError: If the dispatch session cannot be opened
            SQLAlchemyError: If the dispatch transaction cannot be committed
        """
        dispatched: List[Tuple[MatchResult, DispatchOutcome]] = []
        with self.session_factory() as session:
            dispatcher = self._build_dispatcher(session, policy)
            for result in results:
                outcome = self._dispatch_one(
                    session, dispatcher, profile, result, listings_by_id, batch_id, trigger, stats
                )
                if outcome is not None:
                    dispatched.append((result, outcome))

        pending = [(result, outcome) for result, outcome in dispatched if outcome.draft_pending]
        if pending:
            self._draft_pending(dispatcher, profile, pending, listings_by_id, policy)

        for _, outcome in dispatched:
            self._count(stats, outcome)

    @staticmethod
    def _dispatch_one(
        session: Session,
        dispatcher: ActionDispatcher,
        profile: RequirementProfile,
        result: MatchResult,
        listings_by_id: Dict[str, Listing],
        batch_id: str,
        trigger: str,
        stats: ProfileRunStats,
    ) -> Optional[DispatchOutcome]:
        listing = listings_by_id[result.listing_id]
        with log_context(listing_id=listing.id):
            try:
                with session.begin_nested():
                    return dispatcher.dispatch(profile, listing, result, batch_id, trigger)
            except (PersistenceError, DispatchError) as e:
                logger.error(
                    f"Dispatch failed for listing {listing.id}, pair rolled back: {e}",
                    exc_info=True,
                    extra={"event": "pipeline.dispatch.failed", "error_type": type(e).__name__},
                )
                stats.dispatch_errors.append(f"{listing.id}: {e}")
                stats.had_errors = True
                return None

    def _draft_pending(
        self,
        dispatcher: ActionDispatcher,
        profile: RequirementProfile,
        pending: List[Tuple[MatchResult, DispatchOutcome]],
        listings_by_id: Dict[str, Listing],
        policy: RunPolicy,
    ) -> None:
        drafts: List[Tuple[DispatchOutcome, DraftedMessage]] = []
        for result, outcome in pending:
            listing = listings_by_id[result.listing_id]
            with log_context(listing_id=listing.id):
                message = dispatcher.request_draft(profile, listing, result, outcome)
            if message is not None:
                drafts.append((outcome, message))

        if not drafts:
            return

        try:
            with self.session_factory() as session:
                store = self._build_dispatcher(session, policy)
                for outcome, message in drafts:
                    store.store_draft(outcome, message)
        except (PersistenceError, SQLAlchemyError) as e:
            logger.warning(
                f"Drafted messages could not be saved: {e}",
                extra={"event": "pipeline.draft.store_failed", "error_type": type(e).__name__},
            )
            for outcome, _ in drafts:
                outcome.message_drafted = False
                outcome.draft = None
                outcome.message_unavailable = True
                outcome.error = outcome.error or str(e)

    def _build_dispatcher(self, session: Session, policy: RunPolicy) -> ActionDispatcher:
        notifier = NotificationService(NotificationRepository(session)) if policy.notify_handler else None
        return ActionDispatcher(
            MatchAlertRepository(session),
            notifier=notifier,
            drafter=self.drafter if policy.draft_messages else None,
            thresholds=policy.thresholds(),
            notify_handler=policy.notify_handler,
            draft_messages=policy.draft_messages,
            suppress_dismissed=policy.suppress_dismissed,
            defer_drafting=True,
            clock=self.clock,
        )

    def _cap_per_listing(self, results: List[MatchResult]) -> Tuple[Dict[str, List[MatchResult]], int]:
        """Keep the best ``max_alerts_per_listing`` results per listing, grouped by profile."""
        cap = self.app_config.advanced.max_alerts_per_listing
        by_listing: Dict[str, List[MatchResult]] = defaultdict(list)
        for result in results:
            by_listing[result.listing_id].append(result)

        kept: Dict[str, List[MatchResult]] = defaultdict(list)
        capped = 0
        for listing_id in sorted(by_listing):
            ranked = sorted(by_listing[listing_id], key=lambda r: (-r.score, r.profile_id))
            if len(ranked) > cap:
                capped += 1
                logger.info(
                    f"Listing {listing_id} matched {len(ranked)} profiles, keeping best {cap}",
                    extra={"event": "pipeline.listing.capped", "listing_id": listing_id},
                )
            for result in ranked[:cap]:
                kept[result.profile_id].append(result)
        return kept, capped

    @staticmethod
    def _apply_ranking(stats: ProfileRunStats, ranking: RankingResult) -> None:
        stats.ranking = ranking
        stats.evaluated_count = ranking.evaluated
        stats.candidate_count = len(ranking.candidates)
        stats.pair_error_count = len(ranking.failures)
        if ranking.failures:
            stats.had_errors = True

    @staticmethod
    def _count(stats: ProfileRunStats, outcome: DispatchOutcome) -> None:
        if outcome.dispatched:
            stats.alerts_created += 1
        if outcome.status == DispatchStatus.ALREADY_ALERTED:
            stats.already_alerted += 1
        elif outcome.status == DispatchStatus.SUPPRESSED:
            stats.suppressed_count += 1
        if outcome.notified:
            stats.notified_count += 1
        if outcome.notification_failed:
            stats.notify_failures += 1
        if outcome.message_drafted:
            stats.drafted_count += 1
        if outcome.message_unavailable:
            stats.draft_failures += 1

    def _send_report(
        self,
        profile: RequirementProfile,
        ranking: RankingResult,
        listings_by_id: Dict[str, Listing],
        schedule_name: Optional[str],
        stats: ProfileRunStats,
    ) -> None:
        if self.report_mailer is None:
            stats.report_status = "skipped"
            logger.info(
                "Report e-mail skipped: SMTP not configured",
                extra={"event": "report.skip", "reason": "smtp_disabled"},
            )
            return

        extra = [profile.assigned_handler] if profile.assigned_handler else []
        delivery = self.report_mailer.send_report(
            profile, ranking, listings_by_id, schedule_name=schedule_name, extra_recipients=extra
        )
        stats.report_status = delivery.status
        if delivery.status == "failed":
            stats.had_errors = True
            stats.error_message = delivery.error

    @staticmethod
    def _log_stats(stats: ProfileRunStats) -> None:
        logger.info(
            "Profile run completed",
            extra={
                "event": "pipeline.run.completed",
                "trigger": stats.trigger,
                "duration_ms": int(stats.duration_seconds * 1000),
                "evaluated": stats.evaluated_count,
                "candidates": stats.candidate_count,
                "alerts_created": stats.alerts_created,
                "already_alerted": stats.already_alerted,
                "notified": stats.notified_count,
                "drafted": stats.drafted_count,
                "pair_errors": stats.pair_error_count,
                "had_errors": stats.had_errors,
            },
        )
