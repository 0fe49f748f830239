"""FastAPI service: offline games for a rendering client and a peer rendezvous relay."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import Settings
from .geometry import Edge, Orientation, edge_in_bounds
from .protocol import MAX_NAME_LENGTH, generate_room_code, peer_id_for
from .session import Session

logger = logging.getLogger(__name__)

SETTINGS = Settings.from_env()
MAX_GRID_SIZE = 20
ROOM_ALLOCATION_ATTEMPTS = 10
ROOM_TTL_SECONDS = 60 * 30  # 30 minutes

app = FastAPI(title="Dots & Boxes", description="Dots & Boxes rules engine and peer lobby")


# ---------- Offline games ----------


@dataclass
class GameSession:
    """An offline match kept in memory for a rendering client."""

    session: Session
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


SESSIONS: Dict[str, GameSession] = {}


class NewGameRequest(BaseModel):
    """Request payload for starting a local two-player game."""

    model_config = ConfigDict(populate_by_name=True)

    first_player_name: str = Field(default="Player 1", alias="p1Name")
    second_player_name: str = Field(default="Player 2", alias="p2Name")
    grid_size: int = Field(
        default=6,
        alias="gridSize",
        ge=2,
        le=MAX_GRID_SIZE,
        description="Dots per side of the square grid",
    )

    @field_validator("first_player_name", "second_player_name")
    @classmethod
    def ensure_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Player name must not be blank")
        if len(value) > MAX_NAME_LENGTH:
            raise ValueError(f"Player name is limited to {MAX_NAME_LENGTH} characters")
        return value


class MoveRequest(BaseModel):
    """Request payload for claiming one edge."""

    model_config = ConfigDict(populate_by_name=True)

    orientation: Orientation = Field(alias="lineType")
    row: int = Field(alias="r", ge=0)
    col: int = Field(alias="c", ge=0)


def _create_session(request: NewGameRequest) -> Tuple[str, GameSession]:
    session = Session(namespace=SETTINGS.peer_namespace)
    session.start_offline(
        request.first_player_name, request.second_player_name, request.grid_size
    )
    game_id = uuid.uuid4().hex
    SESSIONS[game_id] = GameSession(session=session)
    return game_id, SESSIONS[game_id]


def _get_session(game_id: str) -> GameSession:
    try:
        return SESSIONS[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _serialize_session(game_id: str, game_session: GameSession) -> Dict[str, object]:
    with game_session.lock:
        state = game_session.session.snapshot()
    state["id"] = game_id
    return state


@app.post("/api/game")
def create_game(request: NewGameRequest) -> Dict[str, object]:
    game_id, game_session = _create_session(request)
    return _serialize_session(game_id, game_session)


@app.get("/api/game/{game_id}")
def get_game(game_id: str) -> Dict[str, object]:
    return _serialize_session(game_id, _get_session(game_id))


@app.post("/api/game/{game_id}/move")
def make_move(game_id: str, request: MoveRequest) -> Dict[str, object]:
    game_session = _get_session(game_id)
    with game_session.lock:
        session = game_session.session
        if session.config is None:
            raise HTTPException(status_code=409, detail="Game is not active")
        edge = Edge(request.orientation, request.row, request.col)
        if not edge_in_bounds(edge, session.config.grid_size):
            raise HTTPException(status_code=400, detail="Edge is outside the board")
        applied = session.submit_move(edge.orientation, edge.row, edge.col)
    state = _serialize_session(game_id, game_session)
    state["applied"] = applied
    return state


@app.post("/api/game/{game_id}/restart")
def restart_game(game_id: str) -> Dict[str, object]:
    game_session = _get_session(game_id)
    with game_session.lock:
        game_session.session.restart()
    return _serialize_session(game_id, game_session)


@app.delete("/api/game/{game_id}")
def delete_game(game_id: str) -> Dict[str, str]:
    game_session = _get_session(game_id)
    with game_session.lock:
        game_session.session.quit()
    SESSIONS.pop(game_id, None)
    return {"id": game_id, "state": game_session.session.state.value}


# ---------- Rendezvous relay ----------


@dataclass
class PeerSlot:
    """A registered peer identity and, once dialled, the guest linked to it."""

    peer_id: str
    created_at: float = field(default_factory=lambda: time.time())
    owner: Optional[WebSocket] = field(default=None, repr=False)
    guest: Optional[WebSocket] = field(default=None, repr=False)

    def other(self, websocket: WebSocket) -> Optional[WebSocket]:
        if websocket is self.owner:
            return self.guest
        if websocket is self.guest:
            return self.owner
        return None


PEERS: Dict[str, PeerSlot] = {}
PEER_LOCK = asyncio.Lock()


def _cleanup_peers() -> None:
    """Forget reserved room codes that nobody registered in time."""

    now = time.time()
    expired = [
        peer_id
        for peer_id, slot in list(PEERS.items())
        if slot.owner is None and now - slot.created_at >= ROOM_TTL_SECONDS
    ]
    for peer_id in expired:
        PEERS.pop(peer_id, None)


async def _notify(websocket: Optional[WebSocket], frame: Dict[str, object]) -> None:
    if websocket is None:
        return
    try:
        await websocket.send_json(frame)
    except RuntimeError:
        logger.debug("Peer socket already closed, dropping %s", frame.get("event"))


@app.post("/api/room")
async def create_room() -> Dict[str, str]:
    for _ in range(ROOM_ALLOCATION_ATTEMPTS):
        room_id = generate_room_code()
        peer_id = peer_id_for(room_id, SETTINGS.peer_namespace)
        async with PEER_LOCK:
            _cleanup_peers()
            if peer_id not in PEERS:
                PEERS[peer_id] = PeerSlot(peer_id=peer_id)
                break
    else:
        raise HTTPException(status_code=503, detail="Unable to allocate room")

    logger.info("Reserved room %s", room_id)
    return {"roomId": room_id, "peerId": peer_id}


@app.get("/api/room/{room_id}")
async def inspect_room(room_id: str) -> Dict[str, object]:
    peer_id = peer_id_for(room_id, SETTINGS.peer_namespace)
    async with PEER_LOCK:
        _cleanup_peers()
        slot = PEERS.get(peer_id)
        if slot is None:
            raise HTTPException(status_code=404, detail="Room not found")
        available = slot.owner is not None and slot.guest is None
    return {"roomId": room_id.strip().upper(), "peerId": peer_id, "available": available}


async def _relay(websocket: WebSocket, peer_id: str) -> None:
    while True:
        text = await websocket.receive_text()
        try:
            payload = json.loads(text)
        except ValueError:
            logger.debug("Dropping non-JSON frame from %s", peer_id)
            continue
        async with PEER_LOCK:
            slot = PEERS.get(peer_id)
            target = slot.other(websocket) if slot else None
        await _notify(target, {"event": "data", "payload": payload})


@app.websocket("/ws/peer/{peer_id}")
async def register_peer(websocket: WebSocket, peer_id: str) -> None:
    await websocket.accept()
    async with PEER_LOCK:
        _cleanup_peers()
        slot = PEERS.get(peer_id)
        if slot is not None and slot.owner is not None:
            slot = None
        else:
            slot = slot or PeerSlot(peer_id=peer_id)
            slot.owner = websocket
            PEERS[peer_id] = slot

    if slot is None:
        await websocket.send_json({"event": "error", "type": "unavailable-id"})
        await websocket.close()
        return

    logger.info("Peer %s registered", peer_id)
    await websocket.send_json({"event": "registered", "peerId": peer_id})
    try:
        await _relay(websocket, peer_id)
    except WebSocketDisconnect:
        pass
    finally:
        async with PEER_LOCK:
            if PEERS.get(peer_id) is slot:
                PEERS.pop(peer_id, None)
            guest, slot.guest = slot.guest, None
        logger.info("Peer %s released", peer_id)
        await _notify(guest, {"event": "close"})


@app.websocket("/ws/connect/{peer_id}")
async def connect_peer(websocket: WebSocket, peer_id: str) -> None:
    await websocket.accept()
    async with PEER_LOCK:
        slot = PEERS.get(peer_id)
        if slot is None or slot.owner is None or slot.guest is not None:
            slot = None
        else:
            slot.guest = websocket

    if slot is None:
        await websocket.send_json({"event": "error", "type": "peer-unavailable"})
        await websocket.close()
        return

    logger.info("Guest linked to %s", peer_id)
    await _notify(slot.owner, {"event": "open"})
    await websocket.send_json({"event": "open"})
    try:
        await _relay(websocket, peer_id)
    except WebSocketDisconnect:
        pass
    finally:
        owner: Optional[WebSocket] = None
        async with PEER_LOCK:
            if slot.guest is websocket:
                slot.guest = None
                owner = slot.owner
        logger.info("Guest left %s", peer_id)
        await _notify(owner, {"event": "close"})
