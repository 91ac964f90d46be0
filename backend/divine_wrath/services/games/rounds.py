import logging
import random
from typing import Optional

from divine_wrath.models import GodHistory, Phase, Player, Role, RoundWinner, Session
from . import rules
from .scoring import ScoreBook

logger = logging.getLogger(__name__)


class RoundManager:
    """Role assignment, round outcome and Adjudicator rotation for a session.

    All randomness goes through the injected ``rng`` so role assignment and
    rotation are reproducible under a fixed seed.
    """

    def __init__(self, session: Session, scores: ScoreBook, rng: random.Random):
        self.session = session
        self.scores = scores
        self.rng = rng

    def assign_roles(self) -> Player:
        """Deal one Adjudicator and three Suspects and open round 1."""
        session = self.session
        shuffled = list(session.players)
        self.rng.shuffle(shuffled)
        god = shuffled[0]
        for p in session.players:
            p.role = Role.ADJUDICATOR if p is god else Role.SUSPECT
            p.position = None

        self.scores.open()
        session.god_history = GodHistory(player_id=god.identity)
        session.current_round = 1
        session.ranking = None
        self._reset_round_state()
        logger.info(f"[roles] room={session.code} god={god.identity}")
        return god

    def can_stay(self) -> bool:
        """An Adjudicator who missed may not exceed the consecutive-round cap."""
        history = self.session.god_history
        return not (
            history.consecutive_rounds >= rules.MAX_CONSECUTIVE_GOD_ROUNDS - 1
            and history.missed_attacks > 0
        )

    def end_round(self, winner: RoundWinner) -> bool:
        """Record the round outcome. Returns True when the game is over."""
        session = self.session
        session.round_winner = winner
        if session.current_round >= session.total_rounds:
            session.phase = Phase.ENDED
            session.ranking = self.scores.ranking()
            logger.info(f"[game-ended] room={session.code} round={session.current_round} winner={winner.value}")
            return True
        session.phase = Phase.ROUND_TRANSITION
        session.transition_generation += 1
        logger.info(
            f"[round-ended] room={session.code} round={session.current_round} winner={winner.value} "
            f"generation={session.transition_generation}"
        )
        return False

    def stay(self) -> None:
        """Keep the Adjudicator for another round under penalty."""
        history = self.session.god_history
        history.has_penalty = True
        history.consecutive_rounds += 1
        history.missed_attacks = 0
        self.start_next_round(keep_god=True)

    def start_next_round(self, keep_god: bool = False) -> Player:
        session = self.session
        current = session.adjudicator
        god = current
        if not keep_god:
            god = self._pick_successor(current)
            if current is not None:
                current.role = Role.SUSPECT
            god.role = Role.ADJUDICATOR
            session.god_history = GodHistory(player_id=god.identity)
        for p in session.players:
            p.position = None
        session.current_round += 1
        session.round_winner = None
        self._reset_round_state()
        logger.info(f"[round-started] room={session.code} round={session.current_round} god={god.identity} kept={keep_god}")
        return god

    def _pick_successor(self, current: Optional[Player]) -> Player:
        candidates = self.session.living_suspects
        if not candidates:
            candidates = [p for p in self.session.players if p is not current]
        if not candidates:
            # Everyone else left mid-game
            return current
        return self.rng.choice(candidates)

    def _reset_round_state(self) -> None:
        session = self.session
        session.claims = []
        session.attacks = []
        session.turn = 1
        session.verifications_remaining = rules.BASE_VERIFICATIONS
        session.phase = Phase.SETUP
