"""Tests for nickname coloring."""

import pytest

from cli.constants import NICK_COLORS
from cli.palette import NicknamePalette


class TestNicknamePalette:
    """Tests for NicknamePalette."""

    def test_colors_follow_first_appearance(self):
        palette = NicknamePalette()

        assert palette.color_for('alice') == NICK_COLORS[0]
        assert palette.color_for('bob') == NICK_COLORS[1]
        assert palette.color_for('alice') == NICK_COLORS[0]
        assert len(palette) == 2

    def test_wraps_around(self):
        palette = NicknamePalette(['#000000', '#ffffff'])

        colors = [palette.color_for(nick) for nick in ('a', 'b', 'c')]

        assert colors == ['#000000', '#ffffff', '#000000']

    def test_palettes_are_independent(self):
        first = NicknamePalette()
        second = NicknamePalette()
        first.color_for('alice')

        assert second.color_for('bob') == NICK_COLORS[0]

    def test_ansi_escape(self):
        palette = NicknamePalette(['#06b6d4'])

        assert palette.ansi('alice') == '\033[1;38;2;6;182;212malice\033[0m'

    def test_empty_palette_rejected(self):
        with pytest.raises(ValueError):
            NicknamePalette([])
