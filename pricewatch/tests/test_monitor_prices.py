from datetime import datetime, timedelta
from decimal import Decimal
import random
import threading

import pytz

from pricewatch.services.monitor.prices import PriceStateStore

T0 = datetime(2024, 3, 1, 15, 0, tzinfo=pytz.UTC)


def at(seconds):
    return T0 + timedelta(seconds=seconds)


class TestPriceStateStore:
    """Test per-symbol current/previous price state."""

    def setup_method(self):
        self.store = PriceStateStore()

    def test_unknown_symbol(self):
        assert self.store.get("AAPL") is None

    def test_first_sample_has_no_previous(self):
        assert self.store.update("AAPL", Decimal("150"), at(0)) is True
        snap = self.store.get("AAPL")
        assert snap.current.price == Decimal("150")
        assert snap.previous is None
        assert snap.change == Decimal("0")

    def test_new_sample_shifts_current_to_previous(self):
        self.store.update("AAPL", Decimal("150"), at(0))
        self.store.update("AAPL", Decimal("153"), at(1))
        snap = self.store.get("AAPL")
        assert snap.current.price == Decimal("153")
        assert snap.previous.price == Decimal("150")
        assert snap.change == Decimal("3")
        assert snap.change_percent == Decimal("2")

    def test_out_of_order_sample_is_dropped(self):
        """Scenario B: t=100 then t=99 keeps the t=100 sample."""
        self.store.update("AAPL", Decimal("150"), at(100))
        before = self.store.get("AAPL")

        assert self.store.update("AAPL", Decimal("149"), at(99)) is False

        assert self.store.get("AAPL") is before
        assert self.store.get("AAPL").current.timestamp == at(100)

    def test_equal_timestamp_is_accepted(self):
        self.store.update("AAPL", Decimal("150"), at(5))
        assert self.store.update("AAPL", Decimal("151"), at(5)) is True
        assert self.store.get("AAPL").current.price == Decimal("151")

    def test_symbols_are_independent(self):
        self.store.update("AAPL", Decimal("150"), at(10))
        assert self.store.update("TSLA", Decimal("200"), at(1)) is True
        assert self.store.symbols() == {"AAPL", "TSLA"}

    def test_timestamp_never_decreases_for_random_sequence(self):
        rng = random.Random(7)
        last_ts = None
        for i in range(300):
            ts = at(rng.randint(0, 100))
            accepted = self.store.update("AAPL", Decimal(i), ts)
            current = self.store.get("AAPL").current
            if last_ts is not None:
                assert current.timestamp >= last_ts
                assert accepted == (ts >= last_ts)
            last_ts = current.timestamp

    def test_snapshot_serialises(self):
        self.store.update("AAPL", Decimal("150"), at(0))
        self.store.update("AAPL", Decimal("151.5"), at(1))
        data = self.store.get("AAPL").to_dict()
        assert data["current"]["price"] == "151.5"
        assert data["previous"]["price"] == "150"
        assert data["change"] == "1.5"

    def test_concurrent_readers_never_see_torn_pairs(self):
        """previous is always the sample accepted just before current."""
        errors = []
        done = threading.Event()

        def writer():
            for i in range(1, 2000):
                self.store.update("AAPL", Decimal(i), at(i))
            done.set()

        def reader():
            while not done.is_set():
                snap = self.store.get("AAPL")
                if snap and snap.previous:
                    if snap.current.price - snap.previous.price != 1:
                        errors.append(snap)

        threads = [threading.Thread(target=reader) for _ in range(3)]
        threads.append(threading.Thread(target=writer))
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
