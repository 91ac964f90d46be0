import os
import random
import sys
import pytest

# Ensure the backend root (containing the `divine_wrath` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from divine_wrath import create_app, socketio
from divine_wrath.services.games import rules
from divine_wrath.services.games.controller import PhaseController


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ORIGINS = ['http://localhost:5173']
    FRONTEND_URL = None
    ROUND_TRANSITION_DELAY_SEC = 0
    TIMER_HEARTBEAT_SEC = 0
    RNG_SEED = 7
    USE_BLOCKCHAIN = False
    RELAYER_URL = None
    RELAYER_API_KEY = None
    RELAYER_TIMEOUT_SEC = 5
    DIVINE_WRATH_CONTRACT_ID = None


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


class Table:
    """Drives one room through the controller the way four clients would."""

    def __init__(self, controller: PhaseController, code: str = 'ABC123'):
        self.controller = controller
        self.code = code

    @property
    def session(self):
        return self.controller.registry.get(self.code)

    @property
    def god(self):
        return self.session.adjudicator

    @property
    def suspects(self):
        return self.session.suspects

    def seat(self, names=('Ana', 'Ben', 'Cleo', 'Dev')):
        first, *rest = names
        self.controller.create_room('p1', first, code=self.code)
        for i, name in enumerate(rest, start=2):
            self.controller.join_room(self.code, f'p{i}', name)

    def start(self, total_rounds=None):
        self.seat()
        if total_rounds is not None:
            self.controller.set_round_config(self.code, 'p1', total_rounds)
        return self.controller.start_game(self.code, 'p1')

    def place(self, *positions):
        events = []
        for suspect, cell in zip(self.suspects, positions):
            events.extend(self.controller.select_position(self.code, suspect.identity, cell))
        return events

    def claim_all(self):
        """Every living Suspect claims the row they actually stand in."""
        events = []
        for suspect in list(self.session.living_suspects):
            events.extend(self.controller.submit_claim(
                self.code, suspect.identity, suspect.identity, 'row', rules.row_of(suspect.position)))
        return events

    def empty_cell(self):
        return next(c for c in rules.GRID_CELLS if self.session.occupant_of(c) is None)

    def attack(self, cell):
        return self.controller.attack_cell(self.code, self.god.identity, cell)

    def miss_turn(self):
        self.claim_all()
        return self.attack(self.empty_cell())

    def hit_turn(self):
        self.claim_all()
        return self.attack(self.session.living_suspects[0].position)

    def survive_round(self, positions=(1, 2, 3)):
        """Suspects outlast three misses; returns the round-ending events."""
        self.place(*positions)
        events = []
        for _ in range(rules.TURNS_PER_ROUND):
            events = self.miss_turn()
        return events

    def wipe_round(self, positions=(1, 2, 3)):
        """The Adjudicator finds one Suspect per turn."""
        self.place(*positions)
        events = []
        for _ in range(rules.SUSPECT_COUNT):
            events = self.hit_turn()
        return events

    def fire_timer(self):
        generation = self.controller.scheduler.pending(self.code)
        return self.controller.scheduler.fire(self.code, generation, self.controller._fire_round_timer)


@pytest.fixture()
def published():
    return []


@pytest.fixture()
def controller(published):
    return PhaseController(rng=random.Random(7), publish=published.extend)


@pytest.fixture()
def table(controller):
    return Table(controller)