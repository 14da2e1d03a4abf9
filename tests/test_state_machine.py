"""Tests for the transfer state machine."""

import pytest

from receipt_inbox.errors import InvalidTransitionError
from receipt_inbox.uploads.state_machine import (
    SUBMITTABLE,
    TransferEvent,
    UploadStatus,
    can_transition,
    event_for,
    next_status,
)


class TestTransitions:
    """Legal and illegal transitions."""

    @pytest.mark.parametrize(
        "current,event,expected",
        [
            (UploadStatus.PENDING, TransferEvent.SUBMITTED, UploadStatus.UPLOADING),
            (UploadStatus.FAILED, TransferEvent.SUBMITTED, UploadStatus.UPLOADING),
            (UploadStatus.UPLOADING, TransferEvent.SUCCEEDED, UploadStatus.UPLOADED),
            (UploadStatus.UPLOADING, TransferEvent.FAILED, UploadStatus.FAILED),
            (UploadStatus.FAILED, TransferEvent.REARMED, UploadStatus.PENDING),
        ],
    )
    def test_legal_transitions(self, current, event, expected):
        assert next_status(current, event) == expected
        assert can_transition(current, event)

    def test_uploaded_is_terminal(self):
        """Nothing leaves uploaded."""
        for event in TransferEvent:
            with pytest.raises(InvalidTransitionError):
                next_status(UploadStatus.UPLOADED, event)
        assert UploadStatus.UPLOADED.is_terminal
        assert not UploadStatus.FAILED.is_terminal

    def test_pending_cannot_skip_uploading(self):
        """A record is never uploaded without being submitted."""
        with pytest.raises(InvalidTransitionError):
            next_status(UploadStatus.PENDING, TransferEvent.SUCCEEDED)
        with pytest.raises(InvalidTransitionError):
            event_for(UploadStatus.PENDING, UploadStatus.UPLOADED)

    def test_uploading_cannot_be_resubmitted(self):
        assert not can_transition(UploadStatus.UPLOADING, TransferEvent.SUBMITTED)

    def test_accepts_plain_strings(self):
        assert next_status("pending", "SUBMITTED") == UploadStatus.UPLOADING

    def test_event_for_resolves_event(self):
        assert event_for("failed", "pending") == TransferEvent.REARMED
        assert event_for("uploading", "failed") == TransferEvent.FAILED

    def test_error_message_names_status_and_event(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            next_status(UploadStatus.UPLOADED, TransferEvent.FAILED)
        assert exc_info.value.current == "uploaded"
        assert exc_info.value.event == "FAILED"

    def test_submittable_statuses(self):
        assert SUBMITTABLE == {UploadStatus.PENDING, UploadStatus.FAILED}
