from dataclasses import dataclass
from typing import Optional

from divine_wrath.models import Attack, Phase, Player, RoundWinner, ScoreAction, Session
from . import rules
from .scoring import ScoreBook


@dataclass(frozen=True)
class AttackOutcome:
    attack: Attack
    victim: Optional[Player]
    round_winner: Optional[RoundWinner]


class AttackResolver:
    """Applies the Adjudicator's attack for the current turn.

    Kills the occupant of the cell, scores the Adjudicator (hit bonus, penalty
    miss) and every Suspect still alive, then decides whether the round is
    over. When it is not, the next turn opens with more verification budget.
    """

    def __init__(self, session: Session, scores: ScoreBook):
        self.session = session
        self.scores = scores

    def resolve(self, god: Player, cell: int) -> AttackOutcome:
        session = self.session
        history = session.god_history
        victim = session.occupant_of(cell)

        attack = Attack(
            cell=cell,
            turn=session.turn,
            round=session.current_round,
            hit=victim is not None,
            victim_name=victim.name if victim else None,
        )
        session.attacks.append(attack)

        if victim is not None:
            victim.position = None
            points = rules.GOD_FINDS_MORTAL
            if history.has_penalty:
                points += rules.GOD_PENALTY_HIT_BONUS
            self.scores.award(god.identity, ScoreAction.GOD_FIND, points)
        else:
            history.missed_attacks += 1
            if history.has_penalty:
                self.scores.award(god.identity, ScoreAction.GOD_PENALTY_MISS, rules.GOD_PENALTY_MISS)

        survivors = session.living_suspects
        self.scores.award_each((s.identity for s in survivors), ScoreAction.SURVIVE_TURN, rules.MORTAL_SURVIVES_TURN)

        if not survivors:
            winner = RoundWinner.ADJUDICATOR
        elif session.turn >= rules.TURNS_PER_ROUND:
            winner = RoundWinner.SUSPECTS
        else:
            winner = None
        return AttackOutcome(attack=attack, victim=victim, round_winner=winner)

    def open_next_turn(self) -> None:
        # Budget accumulates within a round
        self.session.turn += 1
        self.session.phase = Phase.CLAIMING
        self.session.verifications_remaining += rules.VERIFICATIONS_PER_TURN
