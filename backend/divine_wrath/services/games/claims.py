from typing import Any, List, Optional, Tuple

from divine_wrath.errors import ValidationError
from divine_wrath.models import Claim, ClaimType, ClaimValue, ExternalProof, Player, Session
from .rules import ROW_COLUMN_VALUES


def parse_claim(claim_type: Any, claim_value: Any) -> Tuple[ClaimType, ClaimValue]:
    """Normalize a raw claim payload into a typed (type, value) pair."""
    try:
        ctype = ClaimType(claim_type)
    except ValueError:
        raise ValidationError('Invalid claim type', context={'claim_type': claim_type})
    if ctype is ClaimType.ADJACENT:
        # Adjacency is always "target is adjacent to me"
        return ctype, True
    if isinstance(claim_value, bool) or not isinstance(claim_value, int) or claim_value not in ROW_COLUMN_VALUES:
        raise ValidationError(f'Invalid {ctype.value} value', context={'claim_value': claim_value})
    return ctype, claim_value


class ClaimLedger:
    """Claims of the current round, keyed by turn.

    Append-only until the next round starts. Enforces one claim per claimant
    per turn and rejects a (target, type, value) triple already claimed this
    turn by anyone.
    """

    def __init__(self, session: Session):
        self.session = session

    def claims_for_turn(self, turn: Optional[int] = None) -> List[Claim]:
        turn = self.session.turn if turn is None else turn
        return [c for c in self.session.claims if c.turn == turn]

    def has_claimed(self, identity: str) -> bool:
        return any(c.claimant_id == identity for c in self.claims_for_turn())

    def find(self, claim_id: str) -> Optional[Claim]:
        return next((c for c in self.session.claims if c.id == claim_id), None)

    def validate(self, claimant: Player, target_id: Any, ctype: ClaimType, value: ClaimValue) -> Player:
        """Check a claim against the ledger; returns the target player."""
        if not claimant.is_placed:
            raise ValidationError('Dead players cannot make claims')
        if self.has_claimed(claimant.identity):
            raise ValidationError('You already made a claim this turn')
        target = self.session.find_player(target_id) if isinstance(target_id, str) else None
        if target is None or not target.is_suspect or not target.is_placed:
            raise ValidationError('Invalid target player', context={'target': target_id})
        if ctype is ClaimType.ADJACENT and target.identity == claimant.identity:
            raise ValidationError('Cannot claim to be adjacent to yourself')
        for c in self.claims_for_turn():
            if c.target_id == target.identity and c.claim_type is ctype and c.claim_value == value:
                raise ValidationError('This claim was already made')
        return target

    def record(self, claimant: Player, target: Player, ctype: ClaimType, value: ClaimValue,
               proof: Optional[ExternalProof] = None) -> Claim:
        claim = Claim(
            id=f"{self.session.code}-{self.session.turn}-{claimant.identity}",
            claimant_id=claimant.identity,
            claimant_name=claimant.name,
            target_id=target.identity,
            target_name=target.name,
            claim_type=ctype,
            claim_value=value,
            turn=self.session.turn,
            is_self_claim=target.identity == claimant.identity,
            external_proof=proof,
            adjacent_to=claimant.position if ctype is ClaimType.ADJACENT else None,
        )
        self.session.claims.append(claim)
        return claim

    def is_complete(self) -> bool:
        """True once every living Suspect has claimed this turn."""
        living = {p.identity for p in self.session.living_suspects}
        claimed = {c.claimant_id for c in self.claims_for_turn()}
        return living.issubset(claimed)

    def clear(self) -> None:
        self.session.claims = []
