"""Tests for the action dispatcher and message drafter."""

import threading
from unittest.mock import MagicMock, Mock

import pytest

from property_matcher.config.models import DispatchThresholds
from property_matcher.dispatch import (
    ActionDispatcher,
    DispatchError,
    DispatchStatus,
    DraftedMessage,
    DraftingError,
    DraftingTimeoutError,
    MessageDrafter,
)
from property_matcher.domain.models import AlertStatus, NotificationPriority
from property_matcher.logging.context import get_log_context, log_context
from property_matcher.notifications.models import NotificationError
from property_matcher.persistence.exceptions import DataIntegrityError, PersistenceError
from property_matcher.persistence.repositories import MatchAlertRepository
from property_matcher.textgen import DRAFT_OUTPUT_SCHEMA
from property_matcher.textgen.exceptions import TextGenerationHTTPError

from tests.helpers import FIXED_NOW, make_alert, make_listing, make_profile, make_result


@pytest.fixture
def alert_repo():
    repo = MagicMock(spec=MatchAlertRepository)
    repo.find_open.return_value = None
    repo.was_dismissed.return_value = False
    repo.create.side_effect = lambda alert: alert.model_copy(update={"id": 1})
    return repo


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def drafter():
    mock = Mock()
    mock.draft.return_value = DraftedMessage(subject="T2 em Lisboa", body="Olá Ana, ...")
    return mock


@pytest.fixture
def dispatcher(alert_repo, notifier, drafter):
    return ActionDispatcher(
        alert_repo,
        notifier=notifier,
        drafter=drafter,
        thresholds=DispatchThresholds(low=60, high=70),
        clock=lambda: FIXED_NOW,
    )


def dispatch(dispatcher, score, profile=None, batch_id="batch-1"):
    return dispatcher.dispatch(
        profile or make_profile(), make_listing(), make_result(score=score), batch_id
    )


class TestActionDispatcher:
    """Test cases for ActionDispatcher."""

    def test_below_threshold_does_nothing(self, dispatcher, alert_repo, notifier):
        outcome = dispatch(dispatcher, 59)

        assert outcome.status == DispatchStatus.BELOW_THRESHOLD
        assert outcome.alert_id is None
        alert_repo.find_open.assert_not_called()
        notifier.notify.assert_not_called()

    def test_low_threshold_creates_alert_and_notifies(self, dispatcher, alert_repo, notifier, drafter):
        outcome = dispatch(dispatcher, 60)

        assert outcome.status == DispatchStatus.NOTIFIED
        assert outcome.dispatched and outcome.notified
        assert outcome.alert_id == 1

        created = alert_repo.create.call_args.args[0]
        assert created.status == AlertStatus.PENDING
        assert created.batch_id == "batch-1"
        assert created.assigned_handler == "agent@example.com"
        assert created.created_at == FIXED_NOW
        assert created.verdicts[0]["criterion_key"] == "budget"

        request = notifier.notify.call_args.args[0]
        assert request.recipient == "agent@example.com"
        assert request.priority == NotificationPriority.MEDIUM
        assert request.metadata["alert_id"] == 1
        alert_repo.transition.assert_called_once_with(1, AlertStatus.NOTIFIED, at=FIXED_NOW)
        drafter.draft.assert_not_called()

    def test_high_threshold_drafts_message(self, dispatcher, alert_repo, drafter):
        outcome = dispatch(dispatcher, 70)

        assert outcome.message_drafted
        assert outcome.draft.subject == "T2 em Lisboa"
        alert_repo.update_fields.assert_called_once_with(
            1, drafted_subject="T2 em Lisboa", drafted_body="Olá Ana, ..."
        )

    def test_high_priority_from_eighty(self, dispatcher, notifier):
        dispatch(dispatcher, 85)
        assert notifier.notify.call_args.args[0].priority == NotificationPriority.HIGH

    def test_profile_without_handler_is_not_notified(self, dispatcher, alert_repo, notifier):
        outcome = dispatch(dispatcher, 65, profile=make_profile(assigned_handler=None))

        assert outcome.status == DispatchStatus.CREATED
        assert not outcome.notified
        notifier.notify.assert_not_called()
        alert_repo.transition.assert_not_called()

    def test_notification_failure_keeps_alert(self, dispatcher, alert_repo, notifier, drafter):
        notifier.notify.side_effect = NotificationError("store unavailable")

        outcome = dispatch(dispatcher, 75)

        assert outcome.status == DispatchStatus.CREATED
        assert outcome.dispatched
        assert outcome.notification_failed
        assert outcome.error == "store unavailable"
        alert_repo.transition.assert_not_called()
        drafter.draft.assert_called_once()

    def test_open_alert_is_not_duplicated(self, dispatcher, alert_repo, notifier):
        result = make_result(score=75)
        alert_repo.find_open.return_value = make_alert(
            id=5, score=75, verdicts=result.verdicts_as_dicts(), status=AlertStatus.NOTIFIED
        )

        outcome = dispatcher.dispatch(make_profile(), make_listing(), result, "batch-2")

        assert outcome.status == DispatchStatus.ALREADY_ALERTED
        assert outcome.alert_id == 5
        assert not outcome.dispatched
        alert_repo.create.assert_not_called()
        alert_repo.update_fields.assert_not_called()
        notifier.notify.assert_not_called()

    def test_open_alert_is_rescored(self, dispatcher, alert_repo):
        alert_repo.find_open.return_value = make_alert(id=5, score=62)

        dispatch(dispatcher, 75)

        kwargs = alert_repo.update_fields.call_args.kwargs
        assert alert_repo.update_fields.call_args.args == (5,)
        assert kwargs["score"] == 75

    def test_dismissed_pair_is_suppressed(self, dispatcher, alert_repo, notifier):
        alert_repo.was_dismissed.return_value = True

        outcome = dispatch(dispatcher, 90)

        assert outcome.status == DispatchStatus.SUPPRESSED
        alert_repo.create.assert_not_called()
        notifier.notify.assert_not_called()

    def test_dismissed_pair_alerts_again_when_not_suppressing(self, alert_repo, notifier):
        alert_repo.was_dismissed.return_value = True
        dispatcher = ActionDispatcher(alert_repo, notifier=notifier, suppress_dismissed=False)

        outcome = dispatch(dispatcher, 65)

        assert outcome.dispatched
        alert_repo.was_dismissed.assert_not_called()

    def test_lost_race_reports_existing_alert(self, dispatcher, alert_repo, notifier):
        alert_repo.create.side_effect = DataIntegrityError("duplicate")
        alert_repo.get_by_key.return_value = make_alert(id=7)

        outcome = dispatch(dispatcher, 80)

        assert outcome.status == DispatchStatus.ALREADY_ALERTED
        assert outcome.alert_id == 7
        notifier.notify.assert_not_called()

    def test_drafting_timeout_marks_message_unavailable(self, dispatcher, alert_repo, drafter):
        drafter.draft.side_effect = DraftingTimeoutError(20.0)

        outcome = dispatch(dispatcher, 90)

        assert outcome.status == DispatchStatus.NOTIFIED
        assert outcome.message_unavailable
        assert not outcome.message_drafted
        assert "20" in outcome.error
        alert_repo.update_fields.assert_not_called()

    def test_draft_store_failure_marks_message_unavailable(self, dispatcher, alert_repo):
        alert_repo.update_fields.side_effect = PersistenceError("disk full")

        outcome = dispatch(dispatcher, 90)

        assert outcome.message_unavailable
        assert outcome.error == "disk full"
        assert outcome.dispatched

    def test_notification_happens_before_drafting(self, alert_repo):
        calls = Mock()
        calls.draft.return_value = DraftedMessage(subject="s", body="b")
        dispatcher = ActionDispatcher(alert_repo, notifier=calls, drafter=calls)

        dispatch(dispatcher, 95)

        assert [c[0] for c in calls.method_calls] == ["notify", "draft"]

    def test_disabled_collaborators(self, alert_repo, notifier, drafter):
        dispatcher = ActionDispatcher(
            alert_repo, notifier=notifier, drafter=drafter, notify_handler=False, draft_messages=False
        )

        outcome = dispatch(dispatcher, 95)

        assert outcome.status == DispatchStatus.CREATED
        notifier.notify.assert_not_called()
        drafter.draft.assert_not_called()

    def test_generator_exception_keeps_alert(self, alert_repo, notifier):
        def unreachable(prompt, schema):
            raise ConnectionError("textgen unreachable")

        drafter = MessageDrafter(unreachable)
        dispatcher = ActionDispatcher(alert_repo, notifier=notifier, drafter=drafter)
        try:
            outcome = dispatch(dispatcher, 90)
        finally:
            drafter.close()

        assert outcome.status == DispatchStatus.NOTIFIED
        assert outcome.dispatched
        assert outcome.message_unavailable
        assert "textgen unreachable" in outcome.error
        alert_repo.update_fields.assert_not_called()

    def test_deferred_drafting_leaves_draft_to_caller(self, alert_repo, notifier, drafter):
        dispatcher = ActionDispatcher(alert_repo, notifier=notifier, drafter=drafter, defer_drafting=True)

        outcome = dispatch(dispatcher, 90)

        assert outcome.draft_pending
        assert not outcome.message_drafted
        drafter.draft.assert_not_called()

        message = dispatcher.request_draft(make_profile(), make_listing(), make_result(score=90), outcome)
        assert not outcome.draft_pending
        dispatcher.store_draft(outcome, message)

        assert outcome.message_drafted
        alert_repo.update_fields.assert_called_once_with(
            1, drafted_subject="T2 em Lisboa", drafted_body="Olá Ana, ..."
        )

    def test_deferred_draft_failure_returns_none(self, alert_repo, drafter):
        drafter.draft.side_effect = DraftingError("HTTP 503")
        dispatcher = ActionDispatcher(alert_repo, drafter=drafter, defer_drafting=True)
        outcome = dispatch(dispatcher, 90)

        message = dispatcher.request_draft(make_profile(), make_listing(), make_result(score=90), outcome)

        assert message is None
        assert outcome.message_unavailable
        assert outcome.error == "HTTP 503"

    def test_result_for_other_pair_rejected(self, dispatcher):
        with pytest.raises(DispatchError, match="does not belong"):
            dispatcher.dispatch(make_profile(), make_listing(), make_result(listing_id="lst-9"), "b")

    @pytest.mark.parametrize("batch_id", ["", "   ", None])
    def test_blank_batch_id_rejected(self, dispatcher, batch_id):
        with pytest.raises(DispatchError, match="batch_id"):
            dispatch(dispatcher, 80, batch_id=batch_id)

    def test_outcome_to_dict(self, dispatcher):
        data = dispatch(dispatcher, 90).to_dict()
        assert data["status"] == "notified"
        assert data["draft"] == {"subject": "T2 em Lisboa", "body": "Olá Ana, ..."}


class TestMessageDrafter:
    """Test cases for MessageDrafter."""

    def test_draft_normalizes_output(self):
        generator = Mock(return_value={"subject": "  Um  T2\nem Lisboa ", "body": "\nOlá Ana,\n\nTemos...\n"})
        drafter = MessageDrafter(generator, language="Portuguese (Portugal)")

        message = drafter.draft(make_profile(), make_listing(), make_result(score=88))

        assert message == DraftedMessage(subject="Um T2 em Lisboa", body="Olá Ana,\n\nTemos...")
        prompt, schema = generator.call_args.args
        assert schema == DRAFT_OUTPUT_SCHEMA
        assert "Portuguese (Portugal)" in prompt
        assert "Ana Silva" in prompt
        assert "Compatibility score: 88/100" in prompt
        drafter.close()

    def test_body_is_truncated(self):
        generator = Mock(return_value={"subject": "s", "body": "palavra " * 100})
        drafter = MessageDrafter(generator, max_body_chars=120)

        message = drafter.draft(make_profile(), make_listing(), make_result())

        assert len(message.body) <= 120
        assert message.body.endswith("...")
        drafter.close()

    def test_slow_generator_times_out(self):
        release = threading.Event()

        def slow_generator(prompt, schema):
            release.wait(5)
            return {"subject": "late", "body": "late"}

        drafter = MessageDrafter(slow_generator, timeout_seconds=0.05)
        try:
            with pytest.raises(DraftingTimeoutError) as exc_info:
                drafter.draft(make_profile(), make_listing(), make_result())
            assert exc_info.value.timeout_seconds == 0.05
        finally:
            release.set()
            drafter.close()

    def test_generator_error_becomes_drafting_error(self):
        generator = Mock(side_effect=TextGenerationHTTPError("HTTP 503", status_code=503, url="http://x"))
        drafter = MessageDrafter(generator)

        with pytest.raises(DraftingError, match="503"):
            drafter.draft(make_profile(), make_listing(), make_result())
        drafter.close()

    @pytest.mark.parametrize("error", [ConnectionError("textgen unreachable"), KeyError("output"), RuntimeError("boom")])
    def test_any_generator_exception_becomes_drafting_error(self, error):
        def generator(prompt, schema):
            raise error

        drafter = MessageDrafter(generator)
        try:
            with pytest.raises(DraftingError, match=type(error).__name__) as exc_info:
                drafter.draft(make_profile(), make_listing(), make_result())
        finally:
            drafter.close()

        assert exc_info.value.__cause__ is error

    @pytest.mark.parametrize(
        "output",
        [{"subject": "s"}, {"subject": " ", "body": "b"}, {"subject": "s", "body": 3}, ["s", "b"]],
    )
    def test_incomplete_output_rejected(self, output):
        drafter = MessageDrafter(Mock(return_value=output))
        with pytest.raises(DraftingError):
            drafter.draft(make_profile(), make_listing(), make_result())
        drafter.close()

    def test_generator_sees_log_context(self):
        seen = {}

        def generator(prompt, schema):
            seen.update(get_log_context())
            return {"subject": "s", "body": "b"}

        drafter = MessageDrafter(generator)
        with log_context(run_id="run-1", profile_id="prof-1"):
            drafter.draft(make_profile(), make_listing(), make_result())
        drafter.close()

        assert seen["run_id"] == "run-1"
        assert seen["profile_id"] == "prof-1"

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            MessageDrafter(Mock(), timeout_seconds=0)
