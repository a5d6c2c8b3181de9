"""CLI constants and configuration."""

from pathlib import Path

from prompt_toolkit.styles import Style

COMMANDS = [
    "/host", "/join", "/nick", "/chat", "/send", "/receive", "/peers", "/help", "/clear", "/quit", "/exit"
]
PATH_COMMANDS = ("/send", "/receive")

CONFIG_PATH = Path.home() / '.wormhole' / 'config.json'

STYLE = Style.from_dict(
    {
        "prompt": "#8b5cf6 bold",
        "room": "#d946ef bold",
    }
)

# Rotated through as new nicknames appear in a room.
NICK_COLORS = (
    "#06b6d4", "#8b5cf6", "#d946ef", "#ec4899",
    "#f97316", "#22c55e", "#3b82f6", "#14b8a6",
    "#eab308", "#ef4444",
)

PURPLE = "\033[38;2;139;92;246m"
GREEN = "\033[38;2;34;197;94m"
RED = "\033[38;2;239;68;68m"
DIM = "\033[38;2;107;114;128m"
RESET = "\033[0m"

LOGO = f"""{PURPLE}
 ██╗    ██╗ ██████╗ ██████╗ ███╗   ███╗██╗  ██╗ ██████╗ ██╗     ███████╗
 ██║    ██║██╔═══██╗██╔══██╗████╗ ████║██║  ██║██╔═══██╗██║     ██╔════╝
 ██║ █╗ ██║██║   ██║██████╔╝██╔████╔██║███████║██║   ██║██║     █████╗
 ██║███╗██║██║   ██║██╔══██╗██║╚██╔╝██║██╔══██║██║   ██║██║     ██╔══╝
 ╚███╔███╔╝╚██████╔╝██║  ██║██║ ╚═╝ ██║██║  ██║╚██████╔╝███████╗███████╗
  ╚══╝╚══╝  ╚═════╝ ╚═╝  ╚═╝╚═╝     ╚═╝╚═╝  ╚═╝ ╚═════╝ ╚══════╝╚══════╝
{RESET}"""

WELCOME_TITLE = "Wormhole - P2P chat and resumable folder transfer"
WELCOME_HELP = "Type '/help' for commands or '/quit' to exit.\n"

PROMPT_TEXT = "wormhole> "

HELP_TEXT = """Available commands:
  /host <room>        Create or join a room (leaves the current room)
  /join <room>        Same as /host
  /nick <name>        Set your nickname
  /chat <message>     Send a message (or just type it)
  /send <path>        Offer a file or folder to every peer in the room
  /receive <dir>      Receive the next offered file or folder into a directory
  /peers              Show connected peers
  /clear              Clear screen and redisplay welcome message
  /help               Show this help
  /quit, /exit        Leave the room and exit

Transfers resume automatically: an interrupted /receive keeps its partial
archive and continues from it the next time a sender connects.
Examples:
  /host team-secret
  /nick alice
  /send ./photos
  /receive ~/Downloads/photos"""

SENDER_LABEL = "[Sender]"
RECEIVER_LABEL = "[Receiver]"
