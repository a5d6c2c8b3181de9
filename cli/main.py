"""CLI entry point."""

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

from common.exceptions import WormholeException
from common.logging_config import get_logger, setup_components
from cli.config import Config
from cli.constants import CONFIG_PATH
from cli.repl import WormholeRepl, report_transfer
from cli.room import RoomSession
from swarm.tcp_swarm import TcpSwarm, parse_address

logger = get_logger(__name__)

COMPONENTS = ('common', 'transfer', 'chat', 'swarm', 'cli')


def _add_common_options(parser: argparse.ArgumentParser, suppress: bool) -> None:
    """Options accepted both before and after the subcommand."""
    default = argparse.SUPPRESS if suppress else None
    parser.add_argument('--listen', metavar='HOST:PORT', default=default,
                        help='address to accept peer connections on')
    parser.add_argument('--peer', metavar='HOST:PORT', action='append',
                        default=default if suppress else [],
                        help='peer to dial (repeatable)')
    parser.add_argument('--debug', action='store_true',
                        default=default if suppress else False,
                        help='enable debug logging')
    parser.add_argument('--config', metavar='PATH', default=default,
                        help='config file (default: ~/.wormhole/config.json)')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='wormhole', description='P2P room chat and resumable folder transfer'
    )
    _add_common_options(parser, suppress=False)
    subparsers = parser.add_subparsers(dest='command')

    send = subparsers.add_parser('send', help='send a file or folder to peers in the room')
    send.add_argument('path', help='file or folder to send')
    send.add_argument('-r', '--room', required=True, help='secret room key')
    _add_common_options(send, suppress=True)

    receive = subparsers.add_parser('receive', help='receive a file or folder from peers in the room')
    receive.add_argument('destination', help='output folder')
    receive.add_argument('-r', '--room', required=True, help='secret room key')
    _add_common_options(receive, suppress=True)

    chat = subparsers.add_parser('chat', help='join a text chat room')
    chat.add_argument('-r', '--room', required=True, help='secret room key')
    chat.add_argument('-n', '--nick', help='nickname')
    _add_common_options(chat, suppress=True)

    shell = subparsers.add_parser('shell', help='interactive shell (default)')
    shell.add_argument('-r', '--room', help='room to join on start')
    shell.add_argument('-n', '--nick', help='nickname')
    _add_common_options(shell, suppress=True)

    return parser


def build_swarm(args: argparse.Namespace, config: Config) -> TcpSwarm:
    """
    Create the swarm from config, with command line overrides.

    Raises:
        ValueError: If an address is not HOST:PORT
    """
    if args.listen:
        host, port = parse_address(args.listen)
    else:
        host, port = config.get_listen_address()

    peers = config.get_peers()
    for address in args.peer or []:
        parse_address(address)
        if address not in peers:
            peers.append(address)

    return TcpSwarm(host, port, peers=peers, reconnect_interval=config.get_reconnect_interval())


async def run_transfer(room: RoomSession, args: argparse.Namespace) -> int:
    """Run a one-shot send or receive until the first peer finishes."""
    await room.host(args.room)
    try:
        if args.command == 'send':
            command = room.send(args.path)
            print(f"[Sender] Offering {command.path}, waiting for a receiver...")
        else:
            command = room.receive(args.destination)
            print(f"[Receiver] Ready to receive into {command.path}, waiting for a sender...")

        reporter = asyncio.create_task(report_transfer(command))
        try:
            await command.wait_finished()
        finally:
            reporter.cancel()
            await asyncio.gather(reporter, return_exceptions=True)
        return 0
    finally:
        await room.close()


async def run(args: argparse.Namespace, config: Config) -> int:
    swarm = build_swarm(args, config)
    room = RoomSession(swarm, config)
    nick = getattr(args, 'nick', None)
    if nick:
        room.set_nick(nick)

    if args.command in ('send', 'receive'):
        return await run_transfer(room, args)

    await WormholeRepl(room).run(initial_room=getattr(args, 'room', None))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for CLI."""
    args = build_parser().parse_args(argv)
    config = Config(Path(args.config).expanduser() if args.config else CONFIG_PATH)

    log_level = 'DEBUG' if args.debug else os.getenv('LOG_LEVEL', config.get_log_level())
    setup_components(COMPONENTS, log_level=log_level)
    if args.debug:
        logger.info("Debug logging enabled")

    logger.info("CLI starting...")
    try:
        sys.exit(asyncio.run(run(args, config)))
    except KeyboardInterrupt:
        sys.exit(130)
    except (WormholeException, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("CLI exiting")


if __name__ == "__main__":
    main()
