import pytest

from threadsync.db.enums import ThreadStatus
from threadsync.services.status_translation import (
    priority_label,
    status_label,
    target_status,
    translate_external_event,
)


@pytest.mark.parametrize(
    "event",
    ["issues.closed", "pull_request.closed"],
)
@pytest.mark.parametrize(
    "current",
    [ThreadStatus.OPEN, ThreadStatus.IN_PROGRESS],
)
def test_close_events_resolve_open_threads(event, current):
    transition = translate_external_event("github", event, current.value)

    assert transition is not None
    assert transition.old_status == current.value
    assert transition.new_status == ThreadStatus.RESOLVED.value
    assert transition.new_label == "Resolved"


@pytest.mark.parametrize(
    "current",
    [ThreadStatus.RESOLVED, ThreadStatus.CLOSED, ThreadStatus.DUPLICATE],
)
def test_close_events_never_move_settled_threads(current):
    assert translate_external_event("github", "issues.closed", current.value) is None


def test_unknown_events_have_no_status_meaning():
    assert target_status("github", "issues.opened") is None
    assert translate_external_event("github", "issues.reopened", ThreadStatus.OPEN.value) is None
    assert translate_external_event("slack", "message", ThreadStatus.OPEN.value) is None


def test_missing_status_is_treated_as_open():
    transition = translate_external_event("github", "issues.closed", None)

    assert transition.old_status == ThreadStatus.OPEN.value
    assert transition.old_label == "Open"


def test_labels():
    assert status_label(ThreadStatus.IN_PROGRESS) == "In progress"
    assert status_label(ThreadStatus.DUPLICATE) == "Duplicated"
    assert status_label(99) == "99"
    assert priority_label(3) == "High"
    assert priority_label(None) == "No priority"
