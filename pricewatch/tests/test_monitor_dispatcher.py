from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytz

from pricewatch.services.monitor.dispatcher import AlertDispatcher
from pricewatch.services.monitor.evaluator import AlertEvent

T0 = datetime(2024, 3, 1, 15, 0, tzinfo=pytz.UTC)


def make_event(ticker="AAPL", catalyst_id="c1", price="161", seconds=0):
    return AlertEvent(
        ticker=ticker,
        catalyst_id=catalyst_id,
        catalyst_title="Earnings beat",
        price_before=Decimal("150"),
        price_after=Decimal(price),
        current_price=Decimal(price),
        tolerance_points=Decimal("2"),
        minimum_move=Decimal("10"),
        triggered_at=T0 + timedelta(seconds=seconds),
    )


class TestAlertDispatcher:
    """Test alert dedup, history and listener fan-out."""

    def setup_method(self):
        self.dispatcher = AlertDispatcher()
        self.received = []
        self.handle = self.dispatcher.on_alert(self.received.append)

    def test_publish_queues_until_flush(self):
        self.dispatcher.publish(make_event())
        assert self.received == []
        assert self.dispatcher.pending_count() == 1

        assert self.dispatcher.flush() == 1
        assert len(self.received) == 1
        assert self.dispatcher.pending_count() == 0

    def test_same_key_within_window_delivers_only_latest(self):
        first = make_event(price="161", seconds=0)
        second = make_event(price="163", seconds=30)
        self.dispatcher.publish(first)
        self.dispatcher.publish(second)
        self.dispatcher.flush()

        assert self.received == [second]
        assert self.dispatcher.history() == [second]

    def test_coalesced_event_keeps_original_queue_position(self):
        a1 = make_event(catalyst_id="a", seconds=0)
        b = make_event(catalyst_id="b", seconds=1)
        a2 = make_event(catalyst_id="a", price="165", seconds=2)
        for event in (a1, b, a2):
            self.dispatcher.publish(event)
        self.dispatcher.flush()
        assert self.received == [a2, b]

    def test_different_keys_are_not_deduplicated(self):
        self.dispatcher.publish(make_event(catalyst_id="c1"))
        self.dispatcher.publish(make_event(catalyst_id="c2"))
        self.dispatcher.publish(make_event(ticker="TSLA"))
        assert self.dispatcher.flush() == 3

    def test_same_key_outside_window_delivers_both(self):
        self.dispatcher.publish(make_event(seconds=0))
        self.dispatcher.publish(make_event(seconds=61))
        self.dispatcher.flush()
        assert len(self.received) == 2

    def test_window_is_anchored_at_first_delivery(self):
        """Re-crossing every 50 s must not keep the key suppressed forever."""
        for seconds in (0, 50, 100, 150):
            self.dispatcher.publish(make_event(price=str(161 + seconds), seconds=seconds))
            self.dispatcher.flush()

        assert [e.triggered_at for e in self.received] == [
            T0,
            T0 + timedelta(seconds=100),
        ]
        assert [e.current_price for e in self.dispatcher.history()] == [
            Decimal("211"),
            Decimal("311"),
        ]

    def test_pending_group_window_is_anchored_at_first_event(self):
        for seconds in (0, 40, 80):
            self.dispatcher.publish(make_event(price=str(161 + seconds), seconds=seconds))
        assert self.dispatcher.flush() == 2
        assert [e.triggered_at for e in self.received] == [
            T0 + timedelta(seconds=40),
            T0 + timedelta(seconds=80),
        ]

    def test_repeat_after_delivery_replaces_history_without_redelivery(self):
        first = make_event(price="161", seconds=0)
        self.dispatcher.publish(first)
        self.dispatcher.flush()

        second = make_event(price="164", seconds=20)
        self.dispatcher.publish(second)
        assert self.dispatcher.flush() == 0

        assert self.received == [first]
        assert self.dispatcher.history() == [second]

    def test_failing_listener_does_not_block_others(self):
        """One listener raising must not stop delivery to the rest."""
        calls = []
        self.dispatcher.on_alert(lambda e: calls.append("a"))
        self.dispatcher.on_alert(Mock(side_effect=RuntimeError("boom")))
        self.dispatcher.on_alert(lambda e: calls.append("c"))

        self.dispatcher.publish(make_event())
        self.dispatcher.flush()

        assert calls == ["a", "c"]
        assert len(self.received) == 1

    def test_listener_removed_after_consecutive_failures(self):
        bad = Mock(side_effect=RuntimeError("boom"))
        handle = self.dispatcher.on_alert(bad)
        for i in range(3):
            self.dispatcher.publish(make_event(catalyst_id=f"c{i}"))
            self.dispatcher.flush()
        assert bad.call_count == 3
        assert self.dispatcher.off_alert(handle) is False

        self.dispatcher.publish(make_event(catalyst_id="c9"))
        self.dispatcher.flush()
        assert bad.call_count == 3

    def test_success_resets_failure_count(self):
        flaky = Mock(side_effect=[RuntimeError(), RuntimeError(), None, RuntimeError(), None])
        self.dispatcher.on_alert(flaky)
        for i in range(5):
            self.dispatcher.publish(make_event(catalyst_id=f"c{i}"))
            self.dispatcher.flush()
        assert flaky.call_count == 5
        assert self.dispatcher.listener_count() == 2

    def test_auto_removal_disabled_with_zero(self):
        dispatcher = AlertDispatcher(max_listener_failures=0)
        dispatcher.on_alert(Mock(side_effect=RuntimeError()))
        for i in range(5):
            dispatcher.publish(make_event(catalyst_id=f"c{i}"))
            dispatcher.flush()
        assert dispatcher.listener_count() == 1

    def test_listener_removed_mid_dispatch_is_skipped(self):
        later = Mock()
        handles = {}

        def remover(event):
            self.dispatcher.off_alert(handles["later"])

        self.dispatcher.on_alert(remover)
        handles["later"] = self.dispatcher.on_alert(later)

        self.dispatcher.publish(make_event())
        self.dispatcher.flush()
        later.assert_not_called()

    def test_listener_added_mid_dispatch_waits_for_next_event(self):
        added = Mock()
        added_once = []

        def adder(event):
            if not added_once:
                added_once.append(self.dispatcher.on_alert(added))

        self.dispatcher.on_alert(adder)
        self.dispatcher.publish(make_event(catalyst_id="c1"))
        self.dispatcher.flush()
        added.assert_not_called()

        self.dispatcher.publish(make_event(catalyst_id="c2"))
        self.dispatcher.flush()
        added.assert_called_once()

    def test_same_callable_registered_twice(self):
        fn = Mock()
        h1 = self.dispatcher.on_alert(fn)
        self.dispatcher.on_alert(fn)

        self.dispatcher.publish(make_event(catalyst_id="c1"))
        self.dispatcher.flush()
        assert fn.call_count == 2

        self.dispatcher.off_alert(h1)
        self.dispatcher.publish(make_event(catalyst_id="c2"))
        self.dispatcher.flush()
        assert fn.call_count == 3

    def test_history_is_bounded_fifo(self):
        dispatcher = AlertDispatcher(history_size=3)
        for i in range(5):
            dispatcher.publish(make_event(catalyst_id=f"c{i}"))
        dispatcher.flush()
        assert [e.catalyst_id for e in dispatcher.history()] == ["c2", "c3", "c4"]

    def test_default_history_holds_200(self):
        for i in range(250):
            self.dispatcher.publish(make_event(catalyst_id=f"c{i}"))
        self.dispatcher.flush()
        history = self.dispatcher.history()
        assert len(history) == 200
        assert history[0].catalyst_id == "c50"

