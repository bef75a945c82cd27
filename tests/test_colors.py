"""Tests for color exchange."""
import pygame
import pytest

from guildsync.colors import color_to_hex, is_hex_color, normalize_hex, parse_color


@pytest.mark.parametrize("value, expected", [
    ("#FF5252", True),
    ("#ff5252", True),
    ("FF5252", False),
    ("#FF525", False),
    ("#GG5252", False),
    ("", False),
    (None, False),
    (0xFF5252, False),
])
def test_is_hex_color(value, expected):
    assert is_hex_color(value) == expected


def test_parse_color():
    color = parse_color("#2196F3")
    assert isinstance(color, pygame.Color)
    assert (color.r, color.g, color.b) == (0x21, 0x96, 0xF3)


@pytest.mark.parametrize("value", ["red", "#12", None, "", "#XYZXYZ"])
def test_unparsable_color_is_red(value):
    color = parse_color(value)
    assert (color.r, color.g, color.b) == (255, 0, 0)


def test_default_is_a_copy():
    """Callers may mutate the returned color without touching the default."""
    first = parse_color(None)
    first.g = 200
    assert parse_color(None).g == 0


def test_hex_formatting():
    assert color_to_hex(pygame.Color(76, 175, 80)) == "#4CAF50"
    assert normalize_hex("#4caf50") == "#4CAF50"
    assert normalize_hex("bogus") == "#FF0000"
