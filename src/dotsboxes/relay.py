"""Transport that reaches the other peer through the websocket rendezvous relay.

The relay (``server.py``) answers ``/ws/peer/{id}`` and ``/ws/connect/{id}``
with JSON frames tagged by ``event``. Each socket is read on its own thread;
frames are turned into handler calls that wait in a queue until the owning
thread calls :meth:`RelayHub.pump`, so sessions are still only touched from
one thread.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from functools import partial
from typing import Any, Callable, Dict, Optional, Protocol
from urllib.parse import quote

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException
from websockets.sync.client import connect as connect_websocket

from .connection import Transport, TransportHandler
from .errors import (
    PeerUnavailableError,
    RegistrationError,
    TransportClosedError,
    TransportError,
)

logger = logging.getLogger(__name__)

RELAY_ERRORS = {
    "unavailable-id": RegistrationError,
    "peer-unavailable": PeerUnavailableError,
}


class RelaySocket(Protocol):
    def send(self, message: str) -> None: ...

    def recv(self) -> str: ...

    def close(self) -> None: ...


Connector = Callable[[str], RelaySocket]


class RelayHub:
    """Event queue shared by the transports talking to one relay server."""

    def __init__(self, base_url: str, connector: Optional[Connector] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.connector: Connector = connector or connect_websocket
        self._events: "queue.Queue[Callable[[], None]]" = queue.Queue()

    def transport(self) -> "RelayTransport":
        return RelayTransport(self)

    def post(self, callback: Callable[..., None], *args: Any) -> None:
        self._events.put(partial(callback, *args))

    def pump(self, timeout: float = 0.0) -> int:
        """Deliver queued events, waiting up to ``timeout`` for the first one."""
        delivered = 0
        try:
            callback = self._events.get(timeout=timeout) if timeout > 0 else self._events.get_nowait()
        except queue.Empty:
            return 0
        while True:
            callback()
            delivered += 1
            try:
                callback = self._events.get_nowait()
            except queue.Empty:
                return delivered

    def wait_until(self, predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        """Pump events until ``predicate`` holds or ``timeout`` seconds pass."""
        deadline = time.monotonic() + timeout
        while not predicate():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.pump(timeout=min(remaining, 0.05))
        return True


class RelayTransport(Transport):
    """One relay socket: a registered identity for a host, a dialled link for a guest.

    A host's identity and its link share the socket, so closing either one
    drops both.
    """

    def __init__(self, hub: RelayHub) -> None:
        self.hub = hub
        self.handler: Optional[TransportHandler] = None
        self.socket: Optional[RelaySocket] = None
        self._linked = False
        self._closing = False

    def register(self, peer_id: str, handler: TransportHandler) -> None:
        self.handler = handler
        self._open(f"/ws/peer/{quote(peer_id)}")

    def connect(self, peer_id: str, handler: TransportHandler) -> None:
        self.handler = handler
        self._open(f"/ws/connect/{quote(peer_id)}")

    def _open(self, path: str) -> None:
        handler = self.handler
        url = self.hub.base_url + path
        try:
            self.socket = self.hub.connector(url)
        except (OSError, WebSocketException) as exc:
            logger.warning("Relay unreachable at %s: %s", url, exc)
            if handler is not None:
                self.hub.post(handler.on_transport_error, TransportError(str(exc)))
            return
        logger.debug("Relay socket open at %s", url)
        reader = threading.Thread(
            target=self._read_loop, args=(self.socket,), name=f"relay{path}", daemon=True
        )
        reader.start()

    def send(self, payload: Dict[str, Any]) -> None:
        if self.socket is None or not self._linked:
            raise TransportClosedError("link is not open")
        try:
            self.socket.send(json.dumps(payload))
        except ConnectionClosed as exc:
            raise TransportClosedError(str(exc)) from exc

    def close(self) -> None:
        self._linked = False
        self._closing = True
        if self.socket is not None:
            self.socket.close()

    def release(self) -> None:
        self.close()

    # ---- reader thread ----

    def _read_loop(self, socket: RelaySocket) -> None:
        while True:
            try:
                text = socket.recv()
            except ConnectionClosedOK:
                break
            except (ConnectionClosed, OSError) as exc:
                if not self._closing and self.handler is not None:
                    self.hub.post(self.handler.on_transport_error, TransportError(str(exc)))
                return
            self._dispatch(text)
        if self._linked and not self._closing and self.handler is not None:
            self._linked = False
            self.hub.post(self.handler.on_close)

    def _dispatch(self, text: str) -> None:
        handler = self.handler
        if handler is None:
            return
        try:
            frame = json.loads(text)
        except ValueError:
            logger.debug("Ignoring non-JSON relay frame %r", text)
            return
        event = frame.get("event") if isinstance(frame, dict) else None
        if event == "registered":
            self.hub.post(handler.on_registered, frame.get("peerId"))
        elif event == "open":
            self._linked = True
            self.hub.post(handler.on_open)
        elif event == "data":
            self.hub.post(handler.on_data, frame.get("payload"))
        elif event == "close":
            self._linked = False
            self.hub.post(handler.on_close)
        elif event == "error":
            kind = frame.get("type")
            error_class = RELAY_ERRORS.get(kind, TransportError)
            self.hub.post(handler.on_transport_error, error_class(f"{kind}"))
        else:
            logger.debug("Ignoring relay frame %r", frame)
