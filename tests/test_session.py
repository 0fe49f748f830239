"""Tests for the lobby handshake and lockstep play between two sessions."""

import random

import pytest

from dotsboxes import session as session_module
from dotsboxes.connection import ConnectionState, LocalBroker, LocalTransport
from dotsboxes.errors import SessionStateError, TransportError
from dotsboxes.game import Player, new_game
from dotsboxes.geometry import Orientation
from dotsboxes.protocol import Mode
from dotsboxes.session import Session, SessionState

H, V = Orientation.HORIZONTAL, Orientation.VERTICAL


@pytest.fixture
def broker():
    return LocalBroker()


@pytest.fixture
def fixed_code(monkeypatch):
    monkeypatch.setattr(session_module, "generate_room_code", lambda rng: "4821")
    return "4821"


def _pair(broker, grid_size=6):
    host, guest = Session(broker.transport), Session(broker.transport)
    host.create_room("A", grid_size)
    broker.pump()
    guest.join_room("B", host.room_code)
    broker.pump()
    return host, guest


def test_handshake_assigns_roles_and_boards(broker, fixed_code):
    statuses = []
    host = Session(broker.transport, on_status=statuses.append)
    guest = Session(broker.transport)

    assert host.create_room("A", 6) == "4821"
    assert host.state is SessionState.HOSTING
    broker.pump()
    assert host.status == "Waiting for opponent to join..."
    assert broker.is_registered("db-game-4821")

    guest.join_room("B", "4821")
    assert guest.state is SessionState.JOINING
    broker.pump()

    assert host.state is SessionState.ACTIVE
    assert guest.state is SessionState.ACTIVE
    assert host.config.model_dump(by_alias=True, mode="json") == {
        "p1Name": "A",
        "p2Name": "B",
        "gridSize": 6,
        "mode": "ONLINE",
        "roomId": "4821",
        "myPlayer": "First",
    }
    assert guest.config.local_player is Player.SECOND
    assert guest.config.mode is Mode.ONLINE
    assert guest.config.first_player_name == "A"
    assert guest.room_code == "4821"
    assert host.game == guest.game == new_game(6)
    assert statuses == ["Initializing room...", "Waiting for opponent to join..."]


def test_blank_joiner_name_on_the_wire_becomes_opponent(broker, fixed_code):
    host = Session(broker.transport)
    host.create_room("A", 4)
    broker.pump()
    host.connection.on_open()
    host.connection.on_data({"type": "JOIN", "name": "   "})
    assert host.config.second_player_name == "Opponent"


def test_moves_are_mirrored_to_the_peer(broker):
    host, guest = _pair(broker)
    assert host.submit_move(H, 0, 0)
    broker.pump()
    assert guest.game == host.game
    assert guest.game.current_player is Player.SECOND

    assert guest.submit_move(V, 2, 3)
    broker.pump()
    assert host.game == guest.game
    assert host.game.move_count == 2


def test_out_of_turn_move_is_dropped_without_a_message(broker):
    host, guest = _pair(broker)
    before = guest.game
    assert not guest.submit_move(H, 0, 0)
    assert guest.game is before
    assert broker.pump() == 0

    host.submit_move(H, 0, 0)
    broker.pump()
    assert not host.submit_move(H, 1, 0)
    assert broker.pump() == 0


def test_claimed_or_off_board_move_sends_nothing(broker):
    host, guest = _pair(broker, grid_size=3)
    assert not host.submit_move(H, 5, 0)
    assert broker.pump() == 0
    host.submit_move(H, 0, 0)
    broker.pump()
    # guest's turn now, and the edge is already taken
    assert not guest.submit_move(H, 0, 0)
    assert broker.pump() == 0


def test_full_online_game_stays_in_lockstep(broker):
    host, guest = _pair(broker, grid_size=4)
    rng = random.Random(5)
    while not host.game.is_over:
        mover = host if host.game.current_player is Player.FIRST else guest
        edge = rng.choice(mover.game.available_moves())
        assert mover.submit_move(edge.orientation, edge.row, edge.col)
        broker.pump()
        assert host.game == guest.game
    assert guest.game.winner is not None
    assert sum(host.game.scores.values()) == 9


def test_received_moves_skip_the_turn_check(broker):
    host, guest = _pair(broker, grid_size=3)
    assert host.game.current_player is Player.FIRST
    host.connection.on_data({"type": "MOVE", "lineType": "vertical", "r": 1, "c": 1})
    assert host.game.v_lines[1][1] is True
    assert host.game.current_player is Player.SECOND


def test_malformed_and_off_board_messages_are_ignored(broker):
    host, guest = _pair(broker, grid_size=3)
    before = host.game
    host.connection.on_data({"type": "NOPE"})
    host.connection.on_data("garbage")
    host.connection.on_data({"type": "MOVE", "lineType": "horizontal", "r": 9, "c": 0})
    host.connection.on_data({"type": "JOIN", "name": "late"})
    assert host.game is before
    assert host.state is SessionState.ACTIVE


def test_restart_resets_both_boards(broker):
    host, guest = _pair(broker)
    host.submit_move(H, 0, 0)
    guest_moves = []
    broker.pump()
    guest.subscribe(on_state=guest_moves.append)
    host.restart()
    broker.pump()
    assert host.game == guest.game == new_game(6)
    assert guest_moves == [new_game(6)]


def test_quit_notifies_peer_and_releases_room(broker, fixed_code):
    host, guest = _pair(broker)
    guest.quit()
    assert guest.state is SessionState.TERMINATED
    broker.pump()
    assert host.state is SessionState.TERMINATED
    assert host.status == "Opponent has left the game."
    assert not broker.is_registered("db-game-4821")


class ResettingTransport(LocalTransport):
    """Local endpoint whose socket dies while sending the farewell."""

    def __init__(self, broker, error):
        super().__init__(broker)
        self.error = error

    def send(self, payload):
        if payload.get("type") == "QUIT":
            raise self.error
        super().send(payload)


def test_quit_releases_room_when_farewell_send_resets(broker, fixed_code):
    host = Session(lambda: ResettingTransport(broker, ConnectionResetError("reset by peer")))
    guest = Session(broker.transport)
    host.create_room("A", 6)
    broker.pump()
    guest.join_room("B", "4821")
    broker.pump()
    link = host.connection

    host.quit()
    assert host.state is SessionState.TERMINATED
    assert link.connection.state is ConnectionState.CLOSED
    assert not broker.is_registered("db-game-4821")
    broker.pump()
    assert guest.state is SessionState.TERMINATED
    assert guest.status == "Connection lost."


def test_quit_terminates_even_when_farewell_raises_unexpectedly(broker, fixed_code):
    host = Session(lambda: ResettingTransport(broker, RuntimeError("boom")))
    guest = Session(broker.transport)
    host.create_room("A", 6)
    broker.pump()
    guest.join_room("B", "4821")
    broker.pump()

    with pytest.raises(RuntimeError):
        host.quit()
    assert host.state is SessionState.TERMINATED
    assert host.connection is None
    assert not broker.is_registered("db-game-4821")


def test_grid_size_below_two_is_rejected_the_same_way_everywhere(broker):
    with pytest.raises(ValueError, match="at least 2"):
        Session().start_offline("Ann", "Bob", 1)
    host = Session(broker.transport)
    with pytest.raises(ValueError, match="at least 2"):
        host.create_room("A", 1)
    assert host.state is SessionState.IDLE


def test_transport_error_terminates_active_sessions(broker):
    host, guest = _pair(broker)
    host.connection.transport.fail(TransportError("reset"))
    broker.pump()
    assert host.state is SessionState.TERMINATED
    assert guest.state is SessionState.TERMINATED
    assert host.status == guest.status == "Connection lost."


def test_terminated_is_final(broker):
    host, guest = _pair(broker)
    host.quit()
    broker.pump()
    assert not host.submit_move(H, 0, 0)
    host.restart()
    host.quit()
    assert host.state is SessionState.TERMINATED
    with pytest.raises(SessionStateError):
        host.create_room("A", 6)


def test_unknown_room_returns_to_idle_and_can_retry(broker):
    guest = Session(broker.transport)
    guest.join_room("B", "1234")
    broker.pump()
    assert guest.state is SessionState.IDLE
    assert guest.status == "Could not connect. Check Room ID."
    assert guest.room_code is None

    host = Session(broker.transport)
    code = host.create_room("A", 6)
    broker.pump()
    guest.join_room("B", code)
    broker.pump()
    assert guest.state is SessionState.ACTIVE


def test_taken_room_code_fails_room_creation(broker, fixed_code):
    Session(broker.transport).create_room("A", 6)
    second = Session(broker.transport)
    second.create_room("C", 6)
    broker.pump()
    assert second.state is SessionState.IDLE
    assert second.status == "Error creating room. Please try again."


def test_host_leaving_mid_handshake_sends_guest_back_to_idle(broker):
    host, guest = Session(broker.transport), Session(broker.transport)
    host.create_room("A", 6)
    broker.pump()
    guest.join_room("B", host.room_code)
    host.quit()
    broker.pump()
    assert guest.state is SessionState.IDLE
    assert guest.status == "Connection closed by host."


def test_lobby_input_is_validated_before_connecting():
    created = []

    def factory():
        created.append(True)
        return LocalBroker().transport()

    session = Session(factory)
    assert session.create_room("   ", 6) is None
    assert session.status == "Please enter your name"
    session.join_room("B", "  ")
    assert session.status == "Please enter a Room ID"
    assert session.state is SessionState.IDLE
    assert created == []


def test_offline_players_alternate_on_one_session():
    session = Session()
    session.start_offline("Ann", "Bob", 2)
    assert session.config.mode is Mode.OFFLINE
    for orientation, row, col in ((H, 0, 0), (H, 1, 0), (V, 0, 0), (V, 0, 1)):
        assert session.submit_move(orientation, row, col)
    assert session.game.winner is Player.SECOND
    assert session.snapshot()["winner"] == "Second"

    session.restart()
    assert session.game == new_game(2)
    session.quit()
    assert session.state is SessionState.TERMINATED
