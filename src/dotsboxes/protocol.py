"""Wire vocabulary exchanged between two peers, plus room-code helpers.

Every message is a JSON object tagged by ``type``:

* ``{"type": "JOIN", "name": str}`` guest -> host, once the link is open
* ``{"type": "START", "config": {...}}`` host -> guest, ends the handshake
* ``{"type": "MOVE", "lineType": "horizontal"|"vertical", "r": int, "c": int}``
* ``{"type": "RESTART"}``
* ``{"type": "QUIT"}`` best-effort notice sent right before closing
"""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .game import Player
from .geometry import Edge, Orientation

logger = logging.getLogger(__name__)

PEER_NAMESPACE = "db-game"
ROOM_CODE_RANGE = (1000, 9999)
MAX_NAME_LENGTH = 12
DEFAULT_OPPONENT_NAME = "Opponent"


class Mode(str, Enum):
    OFFLINE = "OFFLINE"
    ONLINE = "ONLINE"


class SessionConfig(BaseModel):
    """Match setup shared by both peers; ``local_player`` differs per side."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    first_player_name: str = Field(alias="p1Name")
    second_player_name: str = Field(alias="p2Name")
    grid_size: int = Field(alias="gridSize", ge=2)
    mode: Mode = Mode.OFFLINE
    room_code: Optional[str] = Field(default=None, alias="roomId")
    local_player: Optional[Player] = Field(default=None, alias="myPlayer")

    def name_of(self, player: Player) -> str:
        if player is Player.FIRST:
            return self.first_player_name
        return self.second_player_name


class JoinMessage(BaseModel):
    type: Literal["JOIN"] = "JOIN"
    name: str = ""


class StartMessage(BaseModel):
    type: Literal["START"] = "START"
    config: SessionConfig


class MoveMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["MOVE"] = "MOVE"
    orientation: Orientation = Field(alias="lineType")
    row: int = Field(alias="r", ge=0)
    col: int = Field(alias="c", ge=0)

    @classmethod
    def from_edge(cls, edge: Edge) -> "MoveMessage":
        return cls(orientation=edge.orientation, row=edge.row, col=edge.col)

    def to_edge(self) -> Edge:
        return Edge(self.orientation, self.row, self.col)


class RestartMessage(BaseModel):
    type: Literal["RESTART"] = "RESTART"


class QuitMessage(BaseModel):
    type: Literal["QUIT"] = "QUIT"


NetworkMessage = Annotated[
    Union[JoinMessage, StartMessage, MoveMessage, RestartMessage, QuitMessage],
    Field(discriminator="type"),
]

_MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(NetworkMessage)


def encode_message(message: BaseModel) -> Dict[str, Any]:
    return message.model_dump(mode="json", by_alias=True)


def parse_message(payload: Any) -> Optional[BaseModel]:
    """Decode a received payload, or return ``None`` if it is not a known message."""
    try:
        if isinstance(payload, (str, bytes)):
            return _MESSAGE_ADAPTER.validate_json(payload)
        return _MESSAGE_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        logger.debug("Ignoring unrecognised payload %r: %s", payload, exc.errors())
        return None


# ---------- Room codes ----------


def generate_room_code(rng: Optional[random.Random] = None) -> str:
    low, high = ROOM_CODE_RANGE
    return str((rng or random).randint(low, high))


def peer_id_for(room_code: str, namespace: str = PEER_NAMESPACE) -> str:
    return f"{namespace}-{room_code.strip().upper()}"
