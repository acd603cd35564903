"""
Testes para CooldownTable.
"""

from callbridge.cooldown import CooldownTable

from conftest import FakeClock


class TestCooldownTable:

    def test_first_attempt_allowed(self):
        table = CooldownTable(cooldown_seconds=60, clock=FakeClock())

        assert table.check_and_record("+1555") is None
        assert len(table) == 1

    def test_second_attempt_rejected_with_ceil(self):
        clock = FakeClock()
        table = CooldownTable(cooldown_seconds=60, clock=clock)
        table.check_and_record("+1555")

        clock.advance(10.5)

        assert table.check_and_record("+1555") == 50
        assert table.remaining("+1555") == 50

    def test_rejection_does_not_reset_window(self):
        clock = FakeClock()
        table = CooldownTable(cooldown_seconds=60, clock=clock)
        table.check_and_record("+1555")
        clock.advance(30)
        table.check_and_record("+1555")

        clock.advance(30)

        assert table.check_and_record("+1555") is None

    def test_numbers_are_independent(self):
        table = CooldownTable(cooldown_seconds=60, clock=FakeClock())
        table.check_and_record("+1555")

        assert table.check_and_record("+1666") is None
        assert table.remaining("+1777") == 0

    def test_purge_expired(self):
        clock = FakeClock()
        table = CooldownTable(cooldown_seconds=60, expiry_seconds=3600, clock=clock)
        table.check_and_record("+1555")
        clock.advance(1800)
        table.check_and_record("+1666")

        clock.advance(1800)

        assert table.purge_expired() == 1
        assert len(table) == 1
