"""
now-playing-sync: follow the active MPRIS player and publish what it plays.
"""

import argparse
import asyncio
import logging
import signal
import socket
import sys
from pathlib import Path

from .config import CONFIG_FILE, load_config, save_config
from .listener import NowPlayingListener
from .server import FeedServer

logger = logging.getLogger(__name__)


def get_local_ip() -> str:
    """Returns the LAN IP of this machine (best-guess via a dummy UDP connect)."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(('8.8.8.8', 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return '127.0.0.1'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='now-playing-sync', description=__doc__.strip())
    parser.add_argument('--player', help="preferred player, e.g. 'spotify' or a full MPRIS bus name")
    parser.add_argument('--config', type=Path, default=CONFIG_FILE, help='config file (default: %(default)s)')
    parser.add_argument('--bind-all', action='store_true', default=None, help='listen on all interfaces')
    parser.add_argument('--ws-port', type=int)
    parser.add_argument('--http-port', type=int)
    parser.add_argument('--save', action='store_true', help='write the given options back to the config file')
    parser.add_argument('-v', '--verbose', action='store_true')
    return parser


def resolve_settings(args: argparse.Namespace) -> dict:
    """Config file values overridden by whatever was given on the command line."""
    config = load_config(args.config)
    overrides = {
        'requested_player': args.player,
        'ws_port': args.ws_port,
        'http_port': args.http_port,
        'bind_all': args.bind_all,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if args.save and overrides:
        save_config(overrides, args.config)
    config.update(overrides)
    return config


async def run(listener: NowPlayingListener, settings: dict):
    if settings['bind_all']:
        host, public_host = '0.0.0.0', get_local_ip()
    else:
        host, public_host = '127.0.0.1', '127.0.0.1'

    server = FeedServer(
        listener, host=host, ws_port=settings['ws_port'], http_port=settings['http_port'],
        public_host=public_host, interval=settings['broadcast_interval'],
    )
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    await server.serve(stop)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    settings = resolve_settings(args)

    # Imported here so the rest of the package works without PyGObject
    try:
        from .bus import SessionBusTransport
    except ImportError as e:
        print("Error: pydbus not properly installed (required for MPRIS)", file=sys.stderr)
        print("\nInstall system dependencies first:", file=sys.stderr)
        print("  Ubuntu/Debian: sudo apt install python3-gi", file=sys.stderr)
        print("  Arch:          sudo pacman -S python-gobject", file=sys.stderr)
        print("  Fedora:        sudo dnf install python3-gobject", file=sys.stderr)
        print("\nThen install pydbus:", file=sys.stderr)
        print("  pip install pydbus", file=sys.stderr)
        print(f"\nDetails: {e}", file=sys.stderr)
        return 1

    listener = NowPlayingListener(
        SessionBusTransport(),
        timeout_ms=settings['dbus_timeout_ms'],
        grace=settings['grace_ms'] / 1000,
    )
    if not listener.start(settings['requested_player']):
        return 1
    try:
        asyncio.run(run(listener, settings))
    finally:
        listener.stop()
    return 0


if __name__ == '__main__':
    sys.exit(main())
