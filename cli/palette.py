"""Per-room nickname coloring."""

from typing import Dict, Sequence

from cli.constants import NICK_COLORS


class NicknamePalette:
    """
    Assigns each nickname a color the first time it is seen.

    Colors rotate through the palette in order of first appearance and stay
    fixed for the lifetime of the palette.
    """

    def __init__(self, colors: Sequence[str] = NICK_COLORS):
        if not colors:
            raise ValueError("palette needs at least one color")
        self.colors = tuple(colors)
        self._assigned: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._assigned)

    def color_for(self, nick: str) -> str:
        """
        Get the hex color of a nickname, assigning the next one if new.

        Returns:
            Color string such as "#06b6d4"
        """
        color = self._assigned.get(nick)
        if color is None:
            color = self.colors[len(self._assigned) % len(self.colors)]
            self._assigned[nick] = color
        return color

    def ansi(self, nick: str) -> str:
        """Nickname wrapped in 24-bit ANSI color and bold escapes."""
        color = self.color_for(nick).lstrip('#')
        r, g, b = (int(color[i:i + 2], 16) for i in (0, 2, 4))
        return f"\033[1;38;2;{r};{g};{b}m{nick}\033[0m"
