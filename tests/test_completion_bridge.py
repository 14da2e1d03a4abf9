"""Tests for the completion handler bridge."""

from receipt_inbox.uploads.completion_bridge import CompletionBridge


class TestCompletionBridge:
    """Held callbacks run exactly once."""

    def test_release_runs_callback_once(self):
        bridge = CompletionBridge()
        calls = []
        bridge.hold("s1", lambda: calls.append("s1"))

        assert bridge.has_pending("s1")
        assert bridge.release("s1") is True
        assert bridge.release("s1") is False
        assert calls == ["s1"]
        assert not bridge.has_pending()

    def test_callbacks_released_in_order_per_session(self):
        bridge = CompletionBridge()
        calls = []
        bridge.hold("s1", lambda: calls.append(1))
        bridge.hold("s1", lambda: calls.append(2))
        bridge.hold("s2", lambda: calls.append("other"))

        bridge.release("s1")

        assert calls == [1]
        assert sorted(bridge.pending_sessions()) == ["s1", "s2"]

    def test_drain_runs_everything(self):
        bridge = CompletionBridge()
        calls = []
        bridge.hold("s1", lambda: calls.append(1))
        bridge.hold("s2", lambda: calls.append(2))

        assert bridge.drain() == 2
        assert sorted(calls) == [1, 2]
        assert bridge.drain() == 0

    def test_raising_callback_does_not_break_bridge(self, caplog):
        bridge = CompletionBridge()
        calls = []

        def broken():
            raise RuntimeError("host went away")

        bridge.hold("s1", broken)
        bridge.hold("s1", lambda: calls.append("ok"))

        assert bridge.release("s1") is True
        assert bridge.release("s1") is True
        assert calls == ["ok"]
        assert "raised" in caplog.text
