from typing import Iterable, List

from divine_wrath.models import PlayerScore, ScoreAction, ScoreEntry, Session


class ScoreBook:
    """Additive per-player score ledger for one session.

    Every award appends a ScoreEntry and moves the total by the same amount,
    so ``total == sum(breakdown)`` holds by construction. Totals may go
    negative through penalties; entries are never removed.
    """

    def __init__(self, session: Session):
        self.session = session

    def open(self) -> None:
        """Start a fresh score sheet for every current player, in join order."""
        self.session.scores = {
            p.identity: PlayerScore(player_id=p.identity, player_name=p.name)
            for p in self.session.players
        }

    def award(self, player_id: str, action: ScoreAction, points: int) -> None:
        score = self.session.scores.get(player_id)
        if score is None:
            return
        score.breakdown.append(ScoreEntry(
            round=self.session.current_round,
            turn=self.session.turn,
            action=action,
            points=points,
        ))
        score.total += points

    def award_each(self, player_ids: Iterable[str], action: ScoreAction, points: int) -> None:
        for pid in player_ids:
            self.award(pid, action, points)

    def ranking(self) -> List[PlayerScore]:
        """Scores by descending total; ties keep registration order."""
        return sorted(self.session.scores.values(), key=lambda s: -s.total)
