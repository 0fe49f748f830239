"""Session protocol: lobby handshake, role assignment and in-game message handling.

Both peers run an independent :class:`Session`. Each holds its own
``GameState`` and replays the same ordered moves against the same starting
configuration, so the two boards stay identical without ever being shared.
"""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from .authority import may_move
from .connection import ConnectionManager, Transport
from .errors import PeerUnavailableError, RegistrationError, SessionStateError, TransportError
from .game import GameState, Player, apply, check_grid_size, new_game
from .geometry import Edge, Orientation, edge_in_bounds
from .protocol import (
    DEFAULT_OPPONENT_NAME,
    MAX_NAME_LENGTH,
    PEER_NAMESPACE,
    JoinMessage,
    Mode,
    MoveMessage,
    QuitMessage,
    RestartMessage,
    SessionConfig,
    StartMessage,
    generate_room_code,
    parse_message,
    peer_id_for,
)

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]
StateCallback = Callable[[GameState], None]

# Status strings surfaced to the caller
NAME_REQUIRED = "Please enter your name"
ROOM_CODE_REQUIRED = "Please enter a Room ID"
INITIALIZING_ROOM = "Initializing room..."
WAITING_FOR_OPPONENT = "Waiting for opponent to join..."
CONNECTING = "Connecting to room..."
JOINING = "Connected! Joining game..."
ROOM_ERROR = "Error creating room. Please try again."
PEER_NOT_FOUND = "Could not connect. Check Room ID."
CONNECTION_ERROR = "Connection error. Please try again."
HOST_CLOSED = "Connection closed by host."
OPPONENT_LEFT = "Opponent has left the game."
CONNECTION_LOST = "Connection lost."


class SessionState(str, Enum):
    IDLE = "idle"
    HOSTING = "hosting"
    JOINING = "joining"
    ACTIVE = "active"
    TERMINATED = "terminated"


def _clean_name(name: str) -> str:
    return name.strip()[:MAX_NAME_LENGTH]


class Session:
    """One player's view of a match, from lobby to teardown.

    ``transport_factory`` builds a fresh :class:`Transport` for every lobby
    attempt. A failed handshake returns the session to ``IDLE`` so the caller
    may try again; ``TERMINATED`` is final and needs a new session.
    """

    def __init__(
        self,
        transport_factory: Optional[Callable[[], Transport]] = None,
        *,
        namespace: str = PEER_NAMESPACE,
        rng: Optional[random.Random] = None,
        on_status: Optional[StatusCallback] = None,
        on_state: Optional[StateCallback] = None,
    ) -> None:
        self.transport_factory = transport_factory
        self.namespace = namespace
        self.rng = rng or random.Random()
        self.state = SessionState.IDLE
        self.status = ""
        self.config: Optional[SessionConfig] = None
        self.game: Optional[GameState] = None
        self.room_code: Optional[str] = None
        self.connection: Optional[ConnectionManager] = None
        self._status_listeners: List[StatusCallback] = [on_status] if on_status else []
        self._state_listeners: List[StateCallback] = [on_state] if on_state else []
        # lobby parameters kept until the handshake completes
        self._local_name = ""
        self._grid_size = 0

    # ---- observers ----

    def subscribe(
        self,
        on_status: Optional[StatusCallback] = None,
        on_state: Optional[StateCallback] = None,
    ) -> None:
        if on_status:
            self._status_listeners.append(on_status)
        if on_state:
            self._state_listeners.append(on_state)

    def _set_status(self, status: str) -> None:
        self.status = status
        for listener in self._status_listeners:
            listener(status)

    def _set_game(self, game: GameState) -> None:
        self.game = game
        for listener in self._state_listeners:
            listener(game)

    @property
    def is_online(self) -> bool:
        return self.config is not None and self.config.mode is Mode.ONLINE

    def snapshot(self) -> Dict[str, object]:
        data: Dict[str, object] = {"state": self.state.value, "status": self.status}
        if self.config is not None:
            data["config"] = self.config.model_dump(mode="json", by_alias=True)
        if self.game is not None:
            data.update(self.game.to_snapshot())
        return data

    # ---- lobby ----

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise SessionStateError(
                f"Session is {self.state.value}; expected one of: {allowed}"
            )

    def start_offline(self, first_name: str, second_name: str, grid_size: int) -> None:
        """Begin a local match where both players share this session."""
        self._require(SessionState.IDLE)
        check_grid_size(grid_size)
        config = SessionConfig(
            first_player_name=first_name,
            second_player_name=second_name,
            grid_size=grid_size,
            mode=Mode.OFFLINE,
        )
        self._activate(config)

    def create_room(self, name: str, grid_size: int) -> Optional[str]:
        """Register a room and wait for a guest. Returns the room code, if any."""
        self._require(SessionState.IDLE)
        name = _clean_name(name)
        if not name:
            self._set_status(NAME_REQUIRED)
            return None
        check_grid_size(grid_size)
        self._local_name = name
        self._grid_size = grid_size
        self.room_code = generate_room_code(self.rng)
        self.state = SessionState.HOSTING
        self._set_status(INITIALIZING_ROOM)
        self.connection = ConnectionManager(self._new_transport(), self)
        self.connection.host(peer_id_for(self.room_code, self.namespace))
        return self.room_code

    def join_room(self, name: str, room_code: str) -> None:
        self._require(SessionState.IDLE)
        name = _clean_name(name)
        if not name:
            self._set_status(NAME_REQUIRED)
            return
        room_code = room_code.strip().upper()
        if not room_code:
            self._set_status(ROOM_CODE_REQUIRED)
            return
        self._local_name = name
        self.room_code = room_code
        self.state = SessionState.JOINING
        self._set_status(CONNECTING)
        self.connection = ConnectionManager(self._new_transport(), self)
        self.connection.dial(peer_id_for(room_code, self.namespace))

    def _new_transport(self) -> Transport:
        if self.transport_factory is None:
            raise SessionStateError("Online play needs a transport factory")
        return self.transport_factory()

    def _activate(self, config: SessionConfig) -> None:
        self.config = config
        self.state = SessionState.ACTIVE
        logger.info(
            "Match started: %s vs %s on %dx%d (%s)",
            config.first_player_name,
            config.second_player_name,
            config.grid_size,
            config.grid_size,
            config.mode.value,
        )
        self._set_game(new_game(config.grid_size))

    def _abort_handshake(self, status: str) -> None:
        if self.connection is not None:
            self.connection.teardown()
        self.connection = None
        self.room_code = None
        self.state = SessionState.IDLE
        self._set_status(status)

    # ---- play ----

    def submit_move(self, orientation: Orientation, row: int, col: int) -> bool:
        """Apply a local move. Returns ``False`` when it is silently dropped."""
        if self.state is not SessionState.ACTIVE or self.game is None or self.config is None:
            return False
        if not may_move(self.config, self.game):
            return False
        edge = Edge(Orientation(orientation), row, col)
        if not edge_in_bounds(edge, self.config.grid_size):
            return False
        updated = apply(self.game, edge)
        if updated is self.game:
            return False
        self._set_game(updated)
        if self.is_online and self.connection is not None:
            self.connection.send(MoveMessage.from_edge(edge))
        return True

    def restart(self) -> None:
        """Reset to a fresh board with the same configuration; online, tell the peer."""
        if self.state is not SessionState.ACTIVE or self.config is None:
            return
        self._set_game(new_game(self.config.grid_size))
        if self.is_online and self.connection is not None:
            self.connection.send(RestartMessage())

    def quit(self) -> None:
        """Leave the session for good, notifying the peer if one is linked."""
        if self.state is SessionState.TERMINATED:
            return
        connection, self.connection = self.connection, None
        try:
            if connection is not None:
                connection.teardown(farewell=QuitMessage())
        finally:
            self._terminate()

    def _terminate(self, status: Optional[str] = None) -> None:
        self.state = SessionState.TERMINATED
        self.connection = None
        if status:
            self._set_status(status)
        logger.info("Session terminated")

    # ---- ConnectionListener ----

    def link_registered(self, peer_id: str) -> None:
        if self.state is SessionState.HOSTING:
            logger.info("Room %s ready as %s", self.room_code, peer_id)
            self._set_status(WAITING_FOR_OPPONENT)

    def link_opened(self) -> None:
        if self.state is SessionState.JOINING and self.connection is not None:
            self._set_status(JOINING)
            self.connection.send(JoinMessage(name=self._local_name))

    def link_data(self, payload: Any) -> None:
        message = parse_message(payload)
        if message is None:
            return
        if self.state is SessionState.HOSTING and isinstance(message, JoinMessage):
            self._accept_guest(message)
        elif self.state is SessionState.JOINING and isinstance(message, StartMessage):
            self._adopt_config(message.config)
        elif self.state is SessionState.ACTIVE:
            self._handle_in_game(message)
        else:
            logger.debug("Ignoring %s while %s", message.type, self.state.value)

    def link_closed(self) -> None:
        if self.state is SessionState.ACTIVE:
            self._disconnected(CONNECTION_LOST)
        elif self.state is SessionState.JOINING:
            self._abort_handshake(HOST_CLOSED)
        elif self.state is SessionState.HOSTING:
            # guest left before joining; the room stays registered
            self._set_status(WAITING_FOR_OPPONENT)

    def link_failed(self, error: TransportError) -> None:
        if self.state is SessionState.ACTIVE:
            self._disconnected(CONNECTION_LOST)
        elif self.state is SessionState.HOSTING:
            self._abort_handshake(ROOM_ERROR)
        elif self.state is SessionState.JOINING:
            if isinstance(error, (PeerUnavailableError, RegistrationError)):
                self._abort_handshake(PEER_NOT_FOUND)
            else:
                self._abort_handshake(CONNECTION_ERROR)

    # ---- message handling ----

    def _accept_guest(self, message: JoinMessage) -> None:
        if self.connection is None:
            return
        config = SessionConfig(
            first_player_name=self._local_name,
            second_player_name=_clean_name(message.name) or DEFAULT_OPPONENT_NAME,
            grid_size=self._grid_size,
            mode=Mode.ONLINE,
            room_code=self.room_code,
            local_player=Player.FIRST,
        )
        self.connection.send(StartMessage(config=config))
        self._activate(config)

    def _adopt_config(self, config: SessionConfig) -> None:
        self.room_code = config.room_code or self.room_code
        self._activate(
            config.model_copy(update={"mode": Mode.ONLINE, "local_player": Player.SECOND})
        )

    def _handle_in_game(self, message: BaseModel) -> None:
        if self.config is None or self.game is None:
            return
        if isinstance(message, MoveMessage):
            edge = message.to_edge()
            if not edge_in_bounds(edge, self.config.grid_size):
                logger.debug("Ignoring out-of-board move %s", edge.key)
                return
            # the sender already checked turn order
            updated = apply(self.game, edge)
            if updated is not self.game:
                self._set_game(updated)
        elif isinstance(message, RestartMessage):
            self._set_game(new_game(self.config.grid_size))
        elif isinstance(message, QuitMessage):
            self._disconnected(OPPONENT_LEFT)
        else:
            logger.debug("Ignoring %s during play", message.type)

    def _disconnected(self, status: str) -> None:
        if self.connection is not None:
            self.connection.teardown()
        self._terminate(status)
