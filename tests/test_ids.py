"""Tests for event identifiers and watermarks."""

import pytest

from actionsync.ids import (
    IdGenerator,
    compose_id,
    format_id,
    parse_id,
    parse_watermark,
    split_id,
)


class TestIdGenerator:
    """Tests for IdGenerator."""

    def test_ids_strictly_increase(self):
        """Test 1000 consecutive ids are strictly increasing."""
        gen = IdGenerator()

        ids = [gen.next() for _ in range(1000)]

        assert all(a < b for a, b in zip(ids, ids[1:]))

    def test_same_millisecond_uses_counter(self):
        """Test calls within one millisecond differ only by the counter."""
        gen = IdGenerator(clock=lambda: 1_700_000_000_000)

        first, second, third = gen.next(), gen.next(), gen.next()

        assert split_id(first) == (1_700_000_000_000, 0)
        assert split_id(second) == (1_700_000_000_000, 1)
        assert split_id(third) == (1_700_000_000_000, 2)

    def test_timestamp_dominates_counter(self):
        """Test a later millisecond sorts after any counter value."""
        ticks = iter([1000, 1001])
        gen = IdGenerator(clock=lambda: next(ticks), counter=0xFFFE)

        earlier = gen.next()
        later = gen.next()

        assert later > earlier
        assert split_id(later) == (1001, 0xFFFF)

    def test_counter_wraps(self):
        """Test the counter wraps modulo 2^16 (accepted collision risk)."""
        gen = IdGenerator(clock=lambda: 5, counter=0xFFFF)

        before_wrap = gen.next()
        after_wrap = gen.next()

        assert split_id(before_wrap) == (5, 0xFFFF)
        assert split_id(after_wrap) == (5, 0)
        assert gen.counter == 1

    def test_reset_counter(self):
        """Test restoring a persisted counter."""
        gen = IdGenerator(clock=lambda: 10)
        gen.reset_counter(42)

        assert split_id(gen.next())[1] == 42


class TestIdFormat:
    """Tests for id encoding helpers."""

    def test_format_is_16_hex_chars(self):
        assert format_id(1) == "0000000000000001"
        assert len(format_id(compose_id(1_700_000_000_000, 65535))) == 16

    def test_parse_hex_string(self):
        event_id = compose_id(1_700_000_000_000, 3)
        assert parse_id(format_id(event_id)) == event_id

    def test_parse_accepts_int(self):
        assert parse_id(255) == 255

    def test_hex_order_matches_numeric_order(self):
        """Test fixed-width hex strings compare like the ids they encode."""
        a = compose_id(1000, 65535)
        b = compose_id(1001, 0)
        assert (format_id(a) < format_id(b)) == (a < b)

    @pytest.mark.parametrize(
        "value",
        ["", "xyz", "1" * 17, "1f", "0x0000000000001f", " 00000000000001f",
         "00000000_000001f", "000000000000001F", -1, True, None, 1.5],
    )
    def test_parse_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            parse_id(value)

    def test_timestamp_is_masked_to_48_bits(self):
        event_id = compose_id((1 << 48) + 7, 1)
        assert split_id(event_id) == (7, 1)


class TestWatermark:
    """Tests for watermark parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [(None, 0), ("", 0), ("0", 0), ("42", 42), (17, 17)],
    )
    def test_parse_valid(self, value, expected):
        assert parse_watermark(value) == expected

    @pytest.mark.parametrize("value", ["server-1700000000000-3", "-1", "1.5", -4, False])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            parse_watermark(value)

    def test_numeric_not_lexicographic(self):
        """Test "10" is ahead of "9" even though it sorts first as a string."""
        assert parse_watermark("10") > parse_watermark("9")
