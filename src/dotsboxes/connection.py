"""Ownership of the peer link: transport interface, lifecycle tracking and teardown."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, Deque, Dict, Optional, Protocol

from pydantic import BaseModel

from .errors import (
    PeerUnavailableError,
    RegistrationError,
    TransportClosedError,
    TransportError,
)
from .protocol import encode_message

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class TransportHandler(Protocol):
    """Receiver of asynchronous transport notifications."""

    def on_registered(self, peer_id: str) -> None: ...

    def on_open(self) -> None: ...

    def on_data(self, payload: Any) -> None: ...

    def on_close(self) -> None: ...

    def on_transport_error(self, error: TransportError) -> None: ...


class Transport(ABC):
    """One local endpoint able to own a registered identity and a single link.

    Results are never returned synchronously: they arrive later as calls on the
    handler passed to :meth:`register` or :meth:`connect`.
    """

    @abstractmethod
    def register(self, peer_id: str, handler: TransportHandler) -> None:
        """Claim ``peer_id`` so that a remote peer can dial it."""

    @abstractmethod
    def connect(self, peer_id: str, handler: TransportHandler) -> None:
        """Open a link to the endpoint registered as ``peer_id``."""

    @abstractmethod
    def send(self, payload: Dict[str, Any]) -> None:
        """Queue ``payload`` for the remote side; raises TransportClosedError if unlinked."""

    @abstractmethod
    def close(self) -> None:
        """Close the current link, if any. The remote side is told."""

    @abstractmethod
    def release(self) -> None:
        """Drop the registered identity, if any."""


# ---------- Lifecycle manager ----------


@dataclass
class Connection:
    peer_id: Optional[str]
    state: ConnectionState = ConnectionState.CONNECTING


class ConnectionListener(Protocol):
    def link_registered(self, peer_id: str) -> None: ...

    def link_opened(self) -> None: ...

    def link_data(self, payload: Any) -> None: ...

    def link_closed(self) -> None: ...

    def link_failed(self, error: TransportError) -> None: ...


class ConnectionManager:
    """Owns at most one connection and one registered identity per attempt.

    Transport events are translated into connection state changes and forwarded
    to the listener (the session). Once torn down, late events are dropped.
    """

    def __init__(self, transport: Transport, listener: ConnectionListener) -> None:
        self.transport = transport
        self.listener = listener
        self.connection: Optional[Connection] = None
        self.registered_id: Optional[str] = None
        self._torn_down = False

    @property
    def is_open(self) -> bool:
        return (
            self.connection is not None
            and self.connection.state is ConnectionState.OPEN
        )

    def host(self, peer_id: str) -> None:
        logger.info("Registering peer identity %s", peer_id)
        self.transport.register(peer_id, self)

    def dial(self, peer_id: str) -> None:
        logger.info("Connecting to peer %s", peer_id)
        self.connection = Connection(peer_id=peer_id)
        self.transport.connect(peer_id, self)

    def send(self, message: BaseModel) -> bool:
        """Send ``message`` if the link is open. Returns whether it was handed over."""
        if not self.is_open:
            logger.warning("Dropping %s: no open connection", type(message).__name__)
            return False
        try:
            self.transport.send(encode_message(message))
        except (TransportError, OSError) as exc:
            logger.warning("Failed to send %s: %s", type(message).__name__, exc)
            return False
        return True

    def teardown(self, farewell: Optional[BaseModel] = None) -> None:
        """Best-effort ``farewell``, then close the link and release the identity.

        Closing and releasing happen even when sending the farewell raises.
        """
        if self._torn_down:
            return
        self._torn_down = True
        try:
            if farewell is not None and self.is_open:
                self.send(farewell)
        finally:
            if self.connection is not None:
                self.connection.state = ConnectionState.CLOSED
            try:
                self.transport.close()
            finally:
                self.transport.release()
                self.registered_id = None
                logger.info("Connection torn down")

    # ---- TransportHandler ----

    def on_registered(self, peer_id: str) -> None:
        if self._torn_down:
            return
        self.registered_id = peer_id
        self.listener.link_registered(peer_id)

    def on_open(self) -> None:
        if self._torn_down:
            return
        if self.connection is None or self.connection.state is ConnectionState.CLOSED:
            # incoming link on a registered identity
            self.connection = Connection(peer_id=None)
        self.connection.state = ConnectionState.OPEN
        self.listener.link_opened()

    def on_data(self, payload: Any) -> None:
        if self._torn_down or not self.is_open:
            return
        self.listener.link_data(payload)

    def on_close(self) -> None:
        if self._torn_down or self.connection is None:
            return
        if self.connection.state is ConnectionState.CLOSED:
            return
        self.connection.state = ConnectionState.CLOSED
        logger.info("Remote peer closed the connection")
        self.listener.link_closed()

    def on_transport_error(self, error: TransportError) -> None:
        if self._torn_down:
            return
        if self.connection is not None:
            self.connection.state = ConnectionState.CLOSED
        logger.warning("Transport error: %s", error)
        self.listener.link_failed(error)


# ---------- In-process rendezvous ----------


class LocalBroker:
    """Rendezvous point for transports living in the same process.

    Deliveries are queued and only run from :meth:`pump`, so every event
    re-enters the receiver as a fresh call, in the order it was produced.
    """

    def __init__(self) -> None:
        self._registry: Dict[str, "LocalTransport"] = {}
        self._pending: Deque[Callable[[], None]] = deque()

    def transport(self) -> "LocalTransport":
        return LocalTransport(self)

    def is_registered(self, peer_id: str) -> bool:
        return peer_id in self._registry

    def post(self, callback: Callable[..., None], *args: Any) -> None:
        self._pending.append(partial(callback, *args))

    def pump(self) -> int:
        """Deliver queued events until none remain; returns how many ran."""
        delivered = 0
        while self._pending:
            self._pending.popleft()()
            delivered += 1
        return delivered


class LocalTransport(Transport):
    def __init__(self, broker: LocalBroker) -> None:
        self.broker = broker
        self.peer_id: Optional[str] = None
        self.handler: Optional[TransportHandler] = None
        self.remote: Optional["LocalTransport"] = None

    def register(self, peer_id: str, handler: TransportHandler) -> None:
        self.handler = handler
        if self.broker.is_registered(peer_id):
            self.broker.post(
                handler.on_transport_error,
                RegistrationError(f"unavailable-id: {peer_id}"),
            )
            return
        self.peer_id = peer_id
        self.broker._registry[peer_id] = self
        self.broker.post(handler.on_registered, peer_id)

    def connect(self, peer_id: str, handler: TransportHandler) -> None:
        self.handler = handler
        target = self.broker._registry.get(peer_id)
        if target is None or target.remote is not None or target.handler is None:
            self.broker.post(
                handler.on_transport_error,
                PeerUnavailableError(f"peer-unavailable: {peer_id}"),
            )
            return
        self.remote, target.remote = target, self
        self.broker.post(target.handler.on_open)
        self.broker.post(handler.on_open)

    def send(self, payload: Dict[str, Any]) -> None:
        remote = self.remote
        if remote is None or remote.handler is None:
            raise TransportClosedError("link is not open")
        # serialise so the receiver never shares objects with the sender
        self.broker.post(remote.handler.on_data, json.loads(json.dumps(payload)))

    def close(self) -> None:
        remote = self.remote
        if remote is None:
            return
        self.remote = None
        remote.remote = None
        if remote.handler is not None:
            self.broker.post(remote.handler.on_close)

    def release(self) -> None:
        if self.peer_id is not None and self.broker._registry.get(self.peer_id) is self:
            del self.broker._registry[self.peer_id]
        self.peer_id = None

    def fail(self, error: TransportError) -> None:
        """Report a transport fault on this endpoint; the remote side sees a close."""
        remote = self.remote
        self.remote = None
        if remote is not None:
            remote.remote = None
            if remote.handler is not None:
                self.broker.post(remote.handler.on_close)
        if self.handler is not None:
            self.broker.post(self.handler.on_transport_error, error)
