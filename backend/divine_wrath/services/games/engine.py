import random
from typing import List, Optional

from .controller import PhaseController
from .events import Event
from .relayer import RelayerClient
from .scheduler import RoundTimerScheduler
from .verification import DelegatedVerifier

NAMESPACE = '/ws'


def room_channel(code: str) -> str:
    return f"room:{code}"


class GameEngine:
    """Flask extension owning the room registry and the phase controller.

    Usage::

        engine = GameEngine()
        engine.init_app(flask_app, socketio)
        events = engine.controller.join_room(code, sid, name)
        engine.publish(events)
    """

    def __init__(self):
        self.controller: Optional[PhaseController] = None
        self.relayer: Optional[RelayerClient] = None
        self.socketio = None

    def init_app(self, app, socketio) -> None:
        cfg = app.config
        self.socketio = socketio
        rng = random.Random(cfg.get('RNG_SEED'))
        # Timers and background registration stay off in tests unless asked for
        background = not cfg.get('TESTING') or cfg.get('ENABLE_SCHEDULER_IN_TESTS')

        self.relayer = None
        if cfg.get('USE_BLOCKCHAIN'):
            self.relayer = RelayerClient(
                cfg.get('RELAYER_URL'),
                api_key=cfg.get('RELAYER_API_KEY'),
                timeout=float(cfg.get('RELAYER_TIMEOUT_SEC', 30)),
            )
        scheduler = RoundTimerScheduler(
            spawn=socketio.start_background_task,
            delay=float(cfg.get('ROUND_TRANSITION_DELAY_SEC', 3)),
            heartbeat=int(cfg.get('TIMER_HEARTBEAT_SEC', 0)),
            enabled=bool(background),
        )
        self.controller = PhaseController(
            rng=rng,
            scheduler=scheduler,
            delegated_verifier=DelegatedVerifier(self.relayer) if self.relayer else None,
            registrar=self.relayer,
            publish=self.publish,
            spawn=socketio.start_background_task if background else None,
        )
        app.extensions['divine_wrath'] = self
        app.logger.info(
            f"[config] blockchain={bool(cfg.get('USE_BLOCKCHAIN'))} "
            f"relayer_configured={bool(self.relayer and self.relayer.configured)} background={bool(background)}"
        )

    def publish(self, events: List[Event]) -> None:
        for event in events:
            to = room_channel(event.target) if event.to_room else event.target
            self.socketio.emit(event.name, event.payload, to=to, namespace=NAMESPACE)
