"""Tests for kin.utils env-style parsers."""

from __future__ import annotations

import pytest

from kin.utils import parse_bool, parse_float, parse_int, round2, strip_or_none


class TestParseBool:
    @pytest.mark.parametrize("value", ["1", "true", "TRUE", " yes ", "on"])
    def test_truthy_values(self, value: str) -> None:
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["0", "false", "no", "off", "maybe", ""])
    def test_other_values_are_false(self, value: str) -> None:
        assert parse_bool(value, default=True) is False

    def test_none_uses_default(self) -> None:
        assert parse_bool(None, default=True) is True
        assert parse_bool(None) is False


class TestParseNumbers:
    def test_parse_int(self) -> None:
        assert parse_int(" 42 ", 0) == 42

    def test_parse_int_falls_back(self) -> None:
        assert parse_int("abc", 7) == 7
        assert parse_int(None, 7) == 7
        assert parse_int("1.5", 7) == 7

    def test_parse_float(self) -> None:
        assert parse_float("2.5", 0.0) == 2.5
        assert parse_float("", 10.0) == 10.0


def test_strip_or_none() -> None:
    assert strip_or_none("  x ") == "x"
    assert strip_or_none("   ") is None
    assert strip_or_none(None) is None


def test_round2() -> None:
    assert round2(12.3456) == 12.35
    assert round2(3) == 3.0
