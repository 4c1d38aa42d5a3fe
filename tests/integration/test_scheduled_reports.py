"""Integration tests for scheduled report runs.

RecurrenceScheduler drives MatchingPipeline.run_schedule against a real
in-memory database; report e-mails go through ReportMailer and the real
templates with the SMTP client mocked out.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from property_matcher.config.environment import EnvironmentConfig
from property_matcher.config.models import AppConfig, EmailConfig
from property_matcher.domain.models import Frequency
from property_matcher.notifications.mailer import ReportMailer
from property_matcher.notifications.models import SMTPDeliveryError
from property_matcher.notifications.smtp_client import SMTPClient
from property_matcher.persistence.database import close_database, get_session, init_database
from property_matcher.persistence.repositories import MatchAlertRepository
from property_matcher.pipeline import MatchingPipeline
from property_matcher.scheduler import RecurrenceScheduler

from tests.helpers import FIXED_NOW, make_listing, make_profile, make_schedule, seed_records


class Clock:
    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def integration_database():
    init_database("sqlite:///:memory:")
    seed_records(
        profiles=[make_profile(), make_profile(id="prof-no-email", email=None, assigned_handler=None)],
        listings=[
            make_listing(id="lst-1", title="T2 renovado no centro"),
            make_listing(id="lst-2", title="T2 em Cascais", city="Cascais", state=None),
            make_listing(id="lst-3", title="T2 no Porto", city="Porto", state="Porto"),
        ],
    )
    yield
    close_database()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def smtp_client():
    return Mock(spec=SMTPClient)


@pytest.fixture
def scheduler(integration_database, clock, smtp_client):
    app_config = AppConfig.model_validate({"regions": {"Lisboa": ["Lisboa", "Cascais"]}})
    mailer = ReportMailer(
        EnvironmentConfig(smtp_host="smtp.example.com", smtp_sender_name="Imobiliaria Central"),
        EmailConfig(max_retries=1, retry_initial_delay=1),
        smtp_client=smtp_client,
        sleep=Mock(),
    )
    pipeline = MatchingPipeline(app_config, report_mailer=mailer, clock=clock)
    return RecurrenceScheduler(runner=pipeline.run_schedule, clock=clock)


def sent_message(smtp_client, index=0):
    return smtp_client.send.call_args_list[index][0][0]


class TestScheduledReports:
    """Schedules through the pipeline to report e-mails."""

    def test_weekly_report_end_to_end(self, scheduler, clock, smtp_client):
        schedule = scheduler.create(make_schedule(name="Relatório semanal", min_score=60, send_email=True))
        assert scheduler.run_due().due_count == 0

        clock.now = FIXED_NOW.replace(hour=9)
        report = scheduler.run_due()

        assert report.due_count == 1
        outcome = report.outcomes[0]
        assert outcome.status == "completed"
        assert outcome.stats.report_status == "sent"
        assert outcome.stats.alerts_created == 2
        assert outcome.next_run == FIXED_NOW.replace(hour=9) + timedelta(days=7)

        message = sent_message(smtp_client)
        assert message["Subject"] == "Relatório semanal: 2 properties for Ana Silva"
        assert message["To"] == "ana@example.com, agent@example.com"
        assert "Imobiliaria Central" in str(message["From"])
        text = message.get_body(preferencelist=("plain",)).get_content()
        assert "T2 renovado no centro" in text
        assert "T2 no Porto" not in text

        stored = scheduler.get(schedule.id)
        assert stored.last_run == clock.now
        assert stored.next_run == outcome.next_run

    def test_run_is_not_repeated_until_next_occurrence(self, scheduler, clock, smtp_client):
        scheduler.create(make_schedule(send_email=True))

        clock.now = FIXED_NOW.replace(hour=9)
        scheduler.run_due()
        clock.now = FIXED_NOW.replace(hour=12)
        assert scheduler.run_due().due_count == 0

        clock.now = FIXED_NOW.replace(hour=9) + timedelta(days=7)
        second = scheduler.run_due()

        assert second.due_count == 1
        # Alerts from the first week are still open
        assert second.outcomes[0].stats.alerts_created == 0
        assert second.outcomes[0].stats.already_alerted == 2
        assert smtp_client.send.call_count == 2

    def test_min_score_limits_report(self, scheduler, smtp_client):
        schedule = scheduler.create(make_schedule(min_score=90, send_email=True))

        outcome = scheduler.run_now(schedule.id)

        assert outcome.stats.candidate_count == 1
        assert sent_message(smtp_client)["Subject"] == "Weekly report: 1 property for Ana Silva"
        with get_session() as session:
            alerts = MatchAlertRepository(session).list(profile_id="prof-1")
        assert [a.listing_id for a in alerts] == ["lst-1"]

    def test_report_without_email_only_creates_alerts(self, scheduler, smtp_client):
        schedule = scheduler.create(make_schedule(send_email=False, frequency=Frequency.DAILY))

        outcome = scheduler.run_now(schedule.id)

        assert outcome.status == "completed"
        assert outcome.stats.report_status is None
        assert outcome.stats.alerts_created == 2
        smtp_client.send.assert_not_called()

    def test_delivery_failure_marks_schedule_failed(self, scheduler, clock, smtp_client):
        smtp_client.send.side_effect = SMTPDeliveryError("Connection refused")
        schedule = scheduler.create(make_schedule(send_email=True))

        clock.now = FIXED_NOW.replace(hour=9)
        outcome = scheduler.run_due().outcomes[0]

        assert outcome.status == "failed"
        assert "Connection refused" in outcome.error
        # max_retries=1 means two attempts
        assert smtp_client.send.call_count == 2
        # A failed run still moves on to the next occurrence
        assert scheduler.get(schedule.id).next_run == FIXED_NOW.replace(hour=9) + timedelta(days=7)

    def test_buyer_without_email_skips_report(self, scheduler, smtp_client):
        schedule = scheduler.create(make_schedule(profile_id="prof-no-email", send_email=True))

        outcome = scheduler.run_now(schedule.id)

        assert outcome.status == "completed"
        assert outcome.stats.report_status == "skipped"
        smtp_client.send.assert_not_called()
