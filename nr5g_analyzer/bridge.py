"""Duplex JSON connection to the instrument bridge.

One BridgeConnection wraps one websocket and a receive thread. Callbacks run
on that thread. Sends never raise; they report failure in a SendResult.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import ClientConnection, connect

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Union[str, bytes]], None]


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: Optional[str] = None


class BridgeConnection(threading.Thread):
    def __init__(
        self,
        url: str,
        on_open: Callable[[], None],
        on_message: MessageCallback,
        on_error: Callable[[str], None],
        on_close: Callable[[], None],
        open_timeout: float = 5.0,
    ):
        super().__init__(daemon=True, name="bridge-connection")
        self.url = url
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._on_close = on_close
        self._open_timeout = open_timeout
        self._ws: Optional[ClientConnection] = None
        self._send_lock = threading.Lock()
        self._closing = threading.Event()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing.is_set()

    def run(self) -> None:
        try:
            ws = connect(self.url, open_timeout=self._open_timeout)
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.warning("Bridge connection to %s failed: %s", self.url, exc)
            self._on_error(str(exc) or exc.__class__.__name__)
            self._on_close()
            return

        self._ws = ws
        if self._closing.is_set():
            ws.close()
            return
        self._on_open()
        try:
            for message in ws:
                try:
                    self._on_message(message)
                except Exception:
                    # One bad message must not end the receive loop.
                    logger.exception("Bridge message handler failed")
        except ConnectionClosed as exc:
            if not self._closing.is_set():
                logger.warning("Bridge connection closed abnormally: %s", exc)
                self._on_error(str(exc))
        finally:
            self._ws = None
            self._on_close()

    def send(self, message: Mapping[str, Any]) -> SendResult:
        ws = self._ws
        if ws is None or self._closing.is_set():
            return SendResult(ok=False, error="WebSocket not open")
        try:
            with self._send_lock:
                ws.send(json.dumps(message))
        except (ConnectionClosed, OSError) as exc:
            return SendResult(ok=False, error=str(exc) or "WebSocket not open")
        return SendResult(ok=True)

    def close(self) -> None:
        self._closing.set()
        ws = self._ws
        if ws is not None:
            try:
                ws.close()
            except (ConnectionClosed, OSError) as exc:
                logger.debug("Ignoring error while closing bridge: %s", exc)
