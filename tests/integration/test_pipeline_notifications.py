"""Integration tests for pipeline with handler notifications and drafting.

Tests end-to-end flow:
- Listing ingestion -> Ranking -> Alerts -> Handler notifications -> Drafts
- Alert deduplication across runs and triggers
- Dismissed matches staying suppressed
- Real SQLite database (in-memory)
- Mocked HTTP session for the text-generation endpoint
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest
import requests

from property_matcher.config.models import AppConfig
from property_matcher.dispatch.drafting import MessageDrafter
from property_matcher.domain.models import AlertStatus, NotificationPriority
from property_matcher.persistence.database import close_database, get_session, init_database
from property_matcher.persistence.repositories import MatchAlertRepository, NotificationRepository
from property_matcher.pipeline import MatchingPipeline
from property_matcher.textgen.client import HTTPTextGenerator

from tests.helpers import FIXED_NOW, make_listing, make_profile, seed_records

RECENT = FIXED_NOW - timedelta(hours=1)


@pytest.fixture
def integration_database():
    """Create an in-memory database for integration testing."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture
def integration_app_config():
    return AppConfig.model_validate(
        {
            "regions": {"Lisboa": ["Lisboa", "Oeiras", "Cascais"], "Porto": ["Porto", "Maia"]},
            "policies": {"ingestion": {"low_threshold": 60, "high_threshold": 90, "limit": 10}},
        }
    )


@pytest.fixture
def seeded(integration_database):
    seed_records(
        profiles=[
            make_profile(
                id="buyer-lisboa",
                name="Ana Silva",
                budget_max=350000,
                locations=["Lisboa"],
                property_types=["apartment"],
                bedrooms_min=2,
            ),
            make_profile(
                id="buyer-porto",
                name="Rui Sousa",
                email="rui@example.com",
                assigned_handler="porto@example.com",
                budget_max=250000,
                locations=["Porto"],
            ),
            make_profile(id="buyer-empty", budget_max=None, locations=[]),
        ],
        listings=[
            make_listing(id="lis-centro", title="T2 no centro", price=320000, published_at=RECENT),
            make_listing(
                id="lis-oeiras",
                title="T3 em Oeiras",
                price=340000,
                city="Oeiras",
                state=None,
                bedrooms=3,
                published_at=RECENT,
            ),
            make_listing(
                id="lis-maia",
                title="Moradia na Maia",
                price=240000,
                city="Maia",
                state=None,
                property_type="house",
                published_at=RECENT,
            ),
        ],
    )


@pytest.fixture
def textgen_session():
    session = Mock(spec=requests.Session)
    session.headers = {}
    response = Mock()
    response.status_code = 200
    response.json.return_value = {
        "output": {"subject": "Um T2 para si", "body": "Olá Ana,\n\nEncontrámos um imóvel."}
    }
    session.post.return_value = response
    return session


def alerts_for(profile_id=None):
    with get_session() as session:
        return MatchAlertRepository(session).list(profile_id=profile_id)


def notifications_for(recipient):
    with get_session() as session:
        return NotificationRepository(session).list(recipient=recipient)


class TestPipelineNotificationsIntegration:
    """Integration tests for ingestion with notifications."""

    def test_end_to_end_ingestion(self, seeded, integration_app_config, textgen_session):
        drafter = MessageDrafter(
            HTTPTextGenerator("https://textgen.example.com/generate", session=textgen_session),
            timeout_seconds=5,
        )
        pipeline = MatchingPipeline(integration_app_config, drafter=drafter, clock=lambda: FIXED_NOW)

        try:
            result = pipeline.run_for_listings()
        finally:
            pipeline.close()

        assert result.listing_count == 3
        assert result.profile_count == 2
        assert not result.had_errors

        lisboa = {a.listing_id: a for a in alerts_for("buyer-lisboa")}
        porto = {a.listing_id: a for a in alerts_for("buyer-porto")}
        # Oeiras scores partial location credit for a Lisboa buyer
        assert set(lisboa) == {"lis-centro", "lis-oeiras"}
        assert set(porto) == {"lis-maia"}
        assert lisboa["lis-centro"].score == 100
        assert lisboa["lis-oeiras"].score < 90
        assert all(a.status == AlertStatus.NOTIFIED for a in [*lisboa.values(), *porto.values()])

        # Only matches at or above the draft threshold carry a drafted message
        assert lisboa["lis-centro"].drafted_subject == "Um T2 para si"
        assert lisboa["lis-centro"].drafted_body.startswith("Olá Ana")
        assert lisboa["lis-oeiras"].drafted_subject is None

        agent_notes = notifications_for("agent@example.com")
        assert len(agent_notes) == 2
        top = next(n for n in agent_notes if n.metadata["listing_id"] == "lis-centro")
        assert top.priority == NotificationPriority.HIGH
        assert "100% match" in top.message
        assert top.related_entity_id == "buyer-lisboa"
        assert len(notifications_for("porto@example.com")) == 1

    def test_alert_deduplication_across_triggers(self, seeded, integration_app_config):
        pipeline = MatchingPipeline(integration_app_config, clock=lambda: FIXED_NOW)

        first = pipeline.run_for_listings()
        again = pipeline.run_for_listings()
        scheduled = pipeline.run_for_profile("buyer-lisboa", trigger="schedule")

        assert first.total_alerts == 3
        assert again.total_alerts == 0
        assert scheduled.alerts_created == 0
        assert scheduled.already_alerted == 2
        assert len(alerts_for()) == 3
        assert len(notifications_for("agent@example.com")) == 2

    def test_dismissed_match_stays_suppressed(self, seeded, integration_app_config):
        pipeline = MatchingPipeline(integration_app_config, clock=lambda: FIXED_NOW)
        pipeline.run_for_listings(["lis-centro"])

        with get_session() as session:
            repo = MatchAlertRepository(session)
            alert = repo.find_open("buyer-lisboa", "lis-centro")
            repo.transition(alert.id, AlertStatus.VIEWED)
            repo.transition(alert.id, AlertStatus.DISMISSED)

        result = pipeline.run_for_listings(["lis-centro"])

        stats = {s.profile_id: s for s in result.profile_stats}
        assert stats["buyer-lisboa"].suppressed_count == 1
        assert result.total_alerts == 0
        assert [a.status for a in alerts_for("buyer-lisboa")] == [AlertStatus.DISMISSED]

    def test_drafting_failure_keeps_alert(self, seeded, integration_app_config, textgen_session):
        textgen_session.post.return_value.status_code = 503
        textgen_session.post.return_value.reason = "Service Unavailable"
        drafter = MessageDrafter(
            HTTPTextGenerator("https://textgen.example.com/generate", session=textgen_session),
            timeout_seconds=5,
        )
        pipeline = MatchingPipeline(integration_app_config, drafter=drafter, clock=lambda: FIXED_NOW)

        try:
            result = pipeline.run_for_listings(["lis-centro"])
        finally:
            pipeline.close()

        stats = {s.profile_id: s for s in result.profile_stats}
        assert stats["buyer-lisboa"].alerts_created == 1
        assert stats["buyer-lisboa"].notified_count == 1
        assert stats["buyer-lisboa"].draft_failures == 1
        alert = alerts_for("buyer-lisboa")[0]
        assert alert.status == AlertStatus.NOTIFIED
        assert alert.drafted_body is None

    def test_handler_reads_notifications(self, seeded, integration_app_config):
        pipeline = MatchingPipeline(integration_app_config, clock=lambda: FIXED_NOW)
        pipeline.run_for_listings()

        with get_session() as session:
            repo = NotificationRepository(session)
            first = repo.list(recipient="agent@example.com")[0]
            repo.mark_read(first.id)

        with get_session() as session:
            unread = NotificationRepository(session).list(recipient="agent@example.com", unread_only=True)
        assert len(unread) == 1
        assert unread[0].id != first.id
