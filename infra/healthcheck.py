"""Lightweight read-only HTTP status endpoints for operational monitoring."""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Provider = Callable[[], Any]


class StatusServer:
    """
    JSON status server with one pluggable provider per path.

    ``/health`` is always served; a payload with ``"ok": False`` answers 503.
    Every other route is a read-only view registered by the runner.
    """

    def __init__(self, port: int, health_provider: Callable[[], Dict[str, Any]], routes: Optional[Dict[str, Provider]] = None):
        self._port = int(port)
        self._routes: Dict[str, Provider] = {"/health": health_provider}
        self._routes.update(routes or {})
        self._server: Optional[HTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.server_port

    @property
    def paths(self):
        return sorted(self._routes)

    def start(self) -> None:
        if self._thread:
            return

        handler_cls = self._build_handler(self._routes)
        self._server = HTTPServer(("0.0.0.0", self._port), handler_cls)
        self._thread = threading.Thread(target=self._server.serve_forever, name="StatusServer", daemon=True)
        self._thread.start()
        logger.info("Status server listening on 0.0.0.0:%s", self._server.server_port)

    def stop(self) -> None:
        if not self._server:
            return
        try:
            self._server.shutdown()
            self._server.server_close()
        except OSError as exc:
            logger.warning("Failed shutting down status server: %s", exc)
        if self._thread:
            self._thread.join(timeout=3)
        self._thread = None
        self._server = None

    @staticmethod
    def _build_handler(routes: Dict[str, Provider]):
        class StatusHandler(BaseHTTPRequestHandler):
            def do_GET(self):  # type: ignore[override]
                path = self.path.split("?", 1)[0].rstrip("/") or "/health"
                provider = routes.get(path)
                if provider is None:
                    self._send(404, {"error": f"unknown path {path}"})
                    return

                try:
                    payload = provider()
                except Exception as exc:
                    logger.warning("Status provider for %s failed: %s", path, exc)
                    self._send(500, {"error": str(exc)})
                    return

                status = 200
                if path == "/health" and isinstance(payload, dict) and not payload.get("ok", True):
                    status = 503
                self._send(status, payload)

            def _send(self, status: int, payload: Any) -> None:
                body = json.dumps(payload, default=str).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - suppress noisy logs
                return

        return StatusHandler


__all__ = ["StatusServer"]
