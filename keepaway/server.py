"""
Servidor opcional de status da proteção.

REST:
  GET /status -> {"state", "smoothed_area", "baseline", "enter", "exit", "status", "ts"}
  GET /events -> últimas transições, com os intents emitidos em cada uma
WS: cada cliente recebe um "snapshot" ao conectar. Depois disso o servidor só
empurra mensagens quando o motor produz algo: "transition" a cada mudança de
estado, "baseline" quando o corretor troca o baseline e "sample" limitado a
broadcast_hz.
"""
import asyncio
import json
import logging
import threading
import time
from collections import deque
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, List, Optional

import websockets

from .engine import EngineResult

_LOGGER = logging.getLogger(__name__)


class StatusStore:
    """Último estado publicado e histórico curto de transições."""

    def __init__(self, sample_interval: float = 0.2, max_events: int = 20,
                 clock: Callable[[], float] = time.time):
        self.sample_interval = sample_interval
        self.clock = clock
        self._lock = threading.Lock()
        self._status = {
            "state": "safe", "smoothed_area": 0.0, "baseline": 0.0,
            "enter": 0.0, "exit": 0.0, "status": "", "ts": clock(),
        }
        self._events: deque = deque(maxlen=max_events)
        self._last_sample: Optional[float] = None

    def record(self, result: EngineResult, baseline: float, status: str) -> List[dict]:
        """Atualiza o estado e devolve as mensagens que devem ir aos clientes WS."""
        now = self.clock()
        messages = []
        with self._lock:
            self._status = {
                "state": result.state.value,
                "smoothed_area": float(result.smoothed_area),
                "baseline": float(baseline),
                "enter": float(result.thresholds.enter),
                "exit": float(result.thresholds.exit),
                "status": status,
                "ts": now,
            }
            transition = result.transition
            if transition.changed:
                event = {
                    "type": "transition",
                    "previous": transition.previous.value,
                    "current": transition.current.value,
                    "intents": [intent.value for intent in transition.intents],
                    "status": transition.status,
                    "ts": now,
                }
                self._events.append(event)
                messages.append(event)
            if result.corrected_baseline is not None:
                messages.append({"type": "baseline", "baseline": float(result.corrected_baseline), "ts": now})
            # transição sempre leva amostra junto; fora isso, respeita a taxa
            due = self._last_sample is None or now - self._last_sample >= self.sample_interval
            if messages or due:
                self._last_sample = now
                messages.append(dict(self._status, type="sample"))
        return messages

    def snapshot(self) -> dict:
        with self._lock:
            return dict(self._status)

    def events(self) -> List[dict]:
        with self._lock:
            return list(self._events)


class StatusHandler(BaseHTTPRequestHandler):
    store: StatusStore = None

    def do_GET(self):
        routes = {"/status": self.store.snapshot, "/events": self.store.events}
        view = routes.get(self.path.split("?", 1)[0])
        if view is None:
            self._reply(404, {"error": "not found", "routes": sorted(routes)})
            return
        self._reply(200, view())

    def _reply(self, code: int, payload):
        body = json.dumps(payload).encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        _LOGGER.debug("HTTP %s", format % args)


class StatusServer:
    def __init__(self, http_port=8000, ws_port=8765, hz=5.0, host="127.0.0.1",
                 clock: Callable[[], float] = time.time):
        self.store = StatusStore(1.0 / hz if hz > 0 else 0.2, clock=clock)
        self.host = host
        self.http_port = http_port
        self.ws_port = ws_port
        self._http_server: Optional[ThreadingHTTPServer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_future: Optional[asyncio.Future] = None
        self._clients: set = set()
        self._threads: List[threading.Thread] = []

    @property
    def http_address(self):
        return self._http_server.server_address if self._http_server else None

    def start(self):
        self._start_http()
        self._start_ws()
        _LOGGER.info("Status em http://%s:%d/status e ws://%s:%d", self.host, self.http_address[1],
                     self.host, self.ws_port)

    def stop(self):
        if self._http_server:
            self._http_server.shutdown()
            self._http_server.server_close()
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self._finish)
        for t in self._threads:
            t.join(timeout=1.0)

    def publish(self, result: EngineResult, baseline: float, status: str):
        """Chamado pela thread da sessão a cada resultado do motor."""
        messages = self.store.record(result, baseline, status)
        loop = self._loop
        if messages and loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self._broadcast, [json.dumps(m) for m in messages])

    def _start_http(self):
        handler = type("Handler", (StatusHandler,), {"store": self.store})
        self._http_server = ThreadingHTTPServer((self.host, self.http_port), handler)
        t = threading.Thread(target=self._http_server.serve_forever, name="keepaway-http", daemon=True)
        t.start()
        self._threads.append(t)

    def _start_ws(self):
        t = threading.Thread(target=asyncio.run, args=(self._serve_ws(),), name="keepaway-ws", daemon=True)
        t.start()
        self._threads.append(t)

    async def _serve_ws(self):
        self._loop = asyncio.get_running_loop()
        self._stop_future = self._loop.create_future()
        async with websockets.serve(self._on_client, self.host, self.ws_port):
            await self._stop_future
        self._loop = None

    async def _on_client(self, websocket):
        self._clients.add(websocket)
        try:
            await websocket.send(json.dumps(dict(self.store.snapshot(), type="snapshot")))
            await websocket.wait_closed()
        finally:
            self._clients.discard(websocket)

    def _broadcast(self, payloads: List[str]):
        # roda no loop do WS; clientes lentos não seguram a sessão
        for payload in payloads:
            websockets.broadcast(self._clients, payload)

    def _finish(self):
        if self._stop_future is not None and not self._stop_future.done():
            self._stop_future.set_result(None)
