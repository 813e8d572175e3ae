"""Tests for the progress channel."""

import logging

from statement_ledger.services import ProgressChannel, ProgressEvent, ProgressStep


class TestProgressEvent:
    def test_to_dict_omits_unset_fields(self):
        assert ProgressEvent(ProgressStep.PARSING, progress=0).to_dict() == {
            "step": "parsing",
            "progress": 0,
        }
        assert ProgressEvent(ProgressStep.IMPORTING, 40, 2, 5).to_dict() == {
            "step": "importing",
            "progress": 40,
            "current": 2,
            "total": 5,
        }


class TestProgressChannel:
    """Tests for ProgressChannel."""

    def test_events_keep_order(self):
        channel = ProgressChannel()

        channel.emit(ProgressStep.PARSING, 0)
        channel.emit(ProgressStep.PARSING, 100)
        channel.emit(ProgressStep.CHECKING_DUPLICATES, 0)

        assert channel.steps() == [
            ProgressStep.PARSING,
            ProgressStep.PARSING,
            ProgressStep.CHECKING_DUPLICATES,
        ]
        assert [e.progress for e in channel] == [0, 100, 0]
        assert len(channel) == 3

    def test_listener_sees_events_as_published(self):
        seen = []
        channel = ProgressChannel(listener=seen.append)

        event = channel.emit(ProgressStep.PROCESSING, 100)

        assert seen == [event]

    def test_drain_empties_buffer(self):
        channel = ProgressChannel()
        channel.emit(ProgressStep.PARSING, 0)
        channel.emit(ProgressStep.PARSING, 100)

        drained = list(channel.drain())

        assert len(drained) == 2
        assert len(channel) == 0
        assert list(channel.drain()) == []

    def test_failing_listener_does_not_interrupt(self, caplog):
        """A listener error is logged and later listeners still run."""
        seen = []

        def broken(event):
            raise RuntimeError("display closed")

        channel = ProgressChannel(listener=broken)
        channel.subscribe(seen.append)

        with caplog.at_level(logging.ERROR):
            channel.emit(ProgressStep.IMPORTING, 50, 1, 2)

        assert len(seen) == 1
        assert len(channel) == 1
        assert "Progress listener failed" in caplog.text

    def test_events_snapshot_is_a_copy(self):
        channel = ProgressChannel()
        channel.emit(ProgressStep.PARSING, 0)

        snapshot = channel.events
        snapshot.clear()

        assert len(channel) == 1
