"""
HTTP + WebSocket feed of the now-playing cache for overlay clients (OBS
browser sources and the like).

    GET  /now-playing      current payload as JSON
    GET  /cover.jpg        cover copied from a file:// art URL
    ws://host:ws_port      send 'RECIPIENT' to get the current payload,
                           then receive a push on every change
"""

import asyncio
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from urllib.parse import unquote, urlparse

import websockets
from aiohttp import web

from .metadata import Metadata

logger = logging.getLogger(__name__)

COVER_DIR = Path.home() / '.cache' / 'now-playing-sync'


def format_time(seconds: int) -> str:
    mins = seconds // 60
    secs = seconds % 60
    return f"{mins}:{secs:02d}"


def playback_state(meta: Metadata) -> str:
    if not meta.valid:
        return 'STOPPED'
    return 'PLAYING' if meta.playing else 'PAUSED'


def media_payload(meta: Metadata, player: str | None, elapsed: float, cover_url: str = '') -> dict:
    elapsed_sec = int(elapsed) if meta.valid else 0
    return {
        'state': playback_state(meta),
        'player_name': player.split('.')[-1] if player else '',
        'title': meta.title,
        'artist': meta.artists,
        'album': meta.album,
        'cover_url': cover_url,
        'elapsed': format_time(elapsed_sec),
        'elapsed_seconds': elapsed_sec,
        'timestamp': int(datetime.now().timestamp()),
    }


class CoverStore:
    """Local copy of the current cover for players that expose file:// art."""

    def __init__(self, directory: Path = COVER_DIR):
        self.path = directory / 'current.jpg'
        self._source = ''
        self._stamp = 0

    def url_for(self, art_url: str, public_base: str) -> str:
        if not art_url:
            return ''
        if not art_url.startswith('file://'):
            return art_url
        if art_url != self._source:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(unquote(urlparse(art_url).path), self.path)
            except OSError as e:
                logger.warning("Could not copy cover %s: %s", art_url, e)
                return ''
            self._source = art_url
            self._stamp = int(datetime.now().timestamp())
        return f"{public_base}/cover.jpg?t={self._stamp}"


class FeedServer:

    def __init__(self, listener, host: str = '127.0.0.1', ws_port: int = 6534,
                 http_port: int = 6535, public_host: str | None = None,
                 interval: float = 0.2, covers: CoverStore | None = None):
        self.listener = listener
        self.host = host
        self.ws_port = ws_port
        self.http_port = http_port
        self.public_base = f"http://{public_host or host}:{http_port}"
        self.interval = interval
        self.covers = covers or CoverStore()
        self.clients = set()

    def current_payload(self) -> dict:
        meta = self.listener.snapshot()
        cover_url = self.covers.url_for(meta.art_url, self.public_base)
        return media_payload(meta, self.listener.active_player,
                             self.listener.cache.elapsed(), cover_url)

    # --- HTTP ---

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/now-playing', self.serve_now_playing)
        app.router.add_get('/cover.jpg', self.serve_cover)
        return app

    async def serve_now_playing(self, request):
        return web.json_response(self.current_payload())

    async def serve_cover(self, request):
        if self.covers.path.exists():
            return web.FileResponse(self.covers.path)
        return web.Response(status=404)

    # --- WebSocket ---

    async def handle_client(self, websocket):
        self.clients.add(websocket)
        try:
            handshake = await websocket.recv()
            if handshake == 'RECIPIENT':
                await websocket.send(json.dumps(self.current_payload()))
            async for _ in websocket:
                pass
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)

    async def broadcast_loop(self, stop: asyncio.Event):
        """Push the payload to every client whenever the track data changes."""
        last = None
        while not stop.is_set():
            payload = self.current_payload()
            key = {k: v for k, v in payload.items() if k not in ('timestamp', 'elapsed', 'elapsed_seconds')}
            if key != last and self.clients:
                message = json.dumps(payload)
                await asyncio.gather(
                    *[client.send(message) for client in self.clients],
                    return_exceptions=True,
                )
                last = key
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def serve(self, stop: asyncio.Event):
        runner = web.AppRunner(self.make_app())
        await runner.setup()
        await web.TCPSite(runner, self.host, self.http_port).start()
        ws_server = await websockets.serve(self.handle_client, self.host, self.ws_port)
        logger.info("Serving now-playing on http://%s:%d and ws://%s:%d",
                    self.host, self.http_port, self.host, self.ws_port)
        try:
            await self.broadcast_loop(stop)
        finally:
            ws_server.close()
            await ws_server.wait_closed()
            await runner.cleanup()
