from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import time

from divine_wrath.errors import InvariantViolation
from divine_wrath.services.games.rules import DEFAULT_ROUNDS, BASE_VERIFICATIONS, MAX_PLAYERS


class Role(str, Enum):
    ADJUDICATOR = 'god'
    SUSPECT = 'mortal'


class Phase(str, Enum):
    LOBBY = 'lobby'
    SETUP = 'setup'
    CLAIMING = 'claiming'
    DEDUCTION = 'deduction'
    ROUND_TRANSITION = 'round_transition'
    ENDED = 'ended'


class ClaimType(str, Enum):
    ROW = 'row'
    COLUMN = 'column'
    ADJACENT = 'adjacent'


class RoundWinner(str, Enum):
    ADJUDICATOR = 'god'
    SUSPECTS = 'mortals'


class GodChoice(str, Enum):
    STAY = 'stay'
    CEDE = 'cede'


class ScoreAction(str, Enum):
    SURVIVE_TURN = 'survive_turn'
    TRUE_SELF_CLAIM = 'true_self_claim'
    GOD_FIND = 'god_find'
    GOD_PENALTY_MISS = 'god_penalty_miss'


class Provenance(str, Enum):
    """Which path decided a claim's truth."""

    LOCAL = 'local'
    DELEGATED = 'delegated'
    LOCAL_FALLBACK = 'local_fallback'


ClaimValue = Union[int, bool]


@dataclass
class Player:
    identity: str
    name: str
    role: Optional[Role] = None
    position: Optional[int] = None  # None: dead, or not placed yet
    is_host: bool = False
    is_ready: bool = False
    avatar: Optional[Dict[str, Any]] = None

    @property
    def is_adjudicator(self) -> bool:
        return self.role is Role.ADJUDICATOR

    @property
    def is_suspect(self) -> bool:
        return self.role is Role.SUSPECT

    @property
    def is_placed(self) -> bool:
        return self.position is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.identity,
            'name': self.name,
            'role': self.role.value if self.role else None,
            'position': self.position,
            'isHost': self.is_host,
            'isReady': self.is_ready,
            'avatar': self.avatar,
        }


@dataclass(frozen=True)
class ExternalProof:
    """Proof attached by a Suspect to a claim about themselves."""

    proof: Dict[str, Any]
    public_signals: List[Any]
    is_true: bool

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> Optional['ExternalProof']:
        if not isinstance(payload, dict):
            return None
        proof = payload.get('proof')
        signals = payload.get('publicSignals')
        if not proof or not signals:
            return None
        return cls(proof=proof, public_signals=list(signals), is_true=bool(payload.get('isTrue', True)))

    def to_dict(self) -> Dict[str, Any]:
        return {'proof': self.proof, 'publicSignals': self.public_signals, 'isTrue': self.is_true}


@dataclass
class Claim:
    id: str
    claimant_id: str
    claimant_name: str
    target_id: str
    target_name: str
    claim_type: ClaimType
    claim_value: ClaimValue
    turn: int
    is_self_claim: bool
    external_proof: Optional[ExternalProof] = None
    verified: bool = False
    is_true: Optional[bool] = None
    provenance: Optional[Provenance] = None
    verified_on_chain: bool = False
    blockchain_error: Optional[str] = None
    # Claimant's cell when an Adjacent claim was made
    adjacent_to: Optional[int] = None

    @property
    def public_value(self) -> Optional[ClaimValue]:
        """Value the proof circuit checks: the row/column, or the cell adjacency is measured from."""
        if self.claim_type is ClaimType.ADJACENT:
            return self.adjacent_to
        return self.claim_value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'playerId': self.claimant_id,
            'playerName': self.claimant_name,
            'targetPlayerId': self.target_id,
            'targetPlayerName': self.target_name,
            'claimType': self.claim_type.value,
            'claimValue': self.claim_value,
            'adjacentTo': self.adjacent_to,
            'verified': self.verified,
            'isTrue': self.is_true,
            'turn': self.turn,
            'isSelfClaim': self.is_self_claim,
            'hasProof': self.external_proof is not None,
            'provenance': self.provenance.value if self.provenance else None,
            'verifiedOnChain': self.verified_on_chain,
            'blockchainError': self.blockchain_error,
        }


@dataclass(frozen=True)
class Attack:
    cell: int
    turn: int
    round: int
    hit: bool
    victim_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cell': self.cell,
            'turn': self.turn,
            'round': self.round,
            'hit': self.hit,
            'victimName': self.victim_name,
        }


@dataclass(frozen=True)
class ScoreEntry:
    round: int
    turn: int
    action: ScoreAction
    points: int

    def to_dict(self) -> Dict[str, Any]:
        return {'round': self.round, 'turn': self.turn, 'action': self.action.value, 'points': self.points}


@dataclass
class PlayerScore:
    player_id: str
    player_name: str
    total: int = 0
    breakdown: List[ScoreEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'playerId': self.player_id,
            'playerName': self.player_name,
            'total': self.total,
            'breakdown': [e.to_dict() for e in self.breakdown],
        }


@dataclass
class GodHistory:
    player_id: str
    consecutive_rounds: int = 1
    has_penalty: bool = False
    missed_attacks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'playerId': self.player_id,
            'consecutiveRounds': self.consecutive_rounds,
            'hasPenalty': self.has_penalty,
            'missedAttacks': self.missed_attacks,
        }


@dataclass
class Session:
    """All state of one room. Mutated only while the room's lock is held."""

    code: str
    players: List[Player] = field(default_factory=list)
    phase: Phase = Phase.LOBBY
    turn: int = 0
    current_round: int = 1
    total_rounds: int = DEFAULT_ROUNDS
    claims: List[Claim] = field(default_factory=list)
    attacks: List[Attack] = field(default_factory=list)
    verifications_remaining: int = BASE_VERIFICATIONS
    scores: Dict[str, PlayerScore] = field(default_factory=dict)
    god_history: Optional[GodHistory] = None
    round_winner: Optional[RoundWinner] = None
    ranking: Optional[List[PlayerScore]] = None
    # Bumped each time the room enters round_transition; stale timers compare against it
    transition_generation: int = 0
    blockchain_session_id: Optional[int] = None
    blockchain_registered: Optional[bool] = None
    created_at: float = field(default_factory=time.time)

    def find_player(self, identity: str) -> Optional[Player]:
        for p in self.players:
            if p.identity == identity:
                return p
        return None

    @property
    def host(self) -> Optional[Player]:
        return next((p for p in self.players if p.is_host), None)

    @property
    def adjudicator(self) -> Optional[Player]:
        return next((p for p in self.players if p.is_adjudicator), None)

    @property
    def suspects(self) -> List[Player]:
        return [p for p in self.players if p.is_suspect]

    @property
    def living_suspects(self) -> List[Player]:
        return [p for p in self.players if p.is_suspect and p.is_placed]

    def occupant_of(self, cell: int) -> Optional[Player]:
        return next((p for p in self.players if p.position == cell), None)

    def check_invariants(self) -> None:
        """Raise InvariantViolation if the session is in an impossible state."""
        if len(self.players) > MAX_PLAYERS:
            raise InvariantViolation('Too many players', context={'room': self.code, 'players': len(self.players)})
        if self.phase is not Phase.LOBBY:
            gods = [p for p in self.players if p.is_adjudicator]
            # A short table means someone left mid-game, possibly the Adjudicator
            missing_god = not gods and len(self.players) == MAX_PLAYERS
            if len(gods) > 1 or missing_god:
                raise InvariantViolation('Expected exactly one Adjudicator', context={'room': self.code, 'count': len(gods)})
        positions = [p.position for p in self.players if p.position is not None]
        if len(positions) != len(set(positions)):
            raise InvariantViolation('Two players share a position', context={'room': self.code})
        if self.verifications_remaining < 0:
            raise InvariantViolation('Negative verification budget', context={'room': self.code})
        for score in self.scores.values():
            if sum(e.points for e in score.breakdown) != score.total:
                raise InvariantViolation('Score total drifted from breakdown', context={'room': self.code, 'player': score.player_id})
        per_turn = Counter((c.turn, c.claimant_id) for c in self.claims)
        if any(n > 1 for n in per_turn.values()):
            raise InvariantViolation('Duplicate claim for a claimant in one turn', context={'room': self.code})
        if self.current_round > self.total_rounds:
            raise InvariantViolation('Round counter past configured rounds', context={'room': self.code})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'players': [p.to_dict() for p in self.players],
            'phase': self.phase.value,
            'turn': self.turn,
            'currentRound': self.current_round,
            'totalRounds': self.total_rounds,
            'claims': [c.to_dict() for c in self.claims],
            'attacks': [a.to_dict() for a in self.attacks],
            'verificationsRemaining': self.verifications_remaining,
            'scores': {pid: s.to_dict() for pid, s in self.scores.items()},
            'godHistory': self.god_history.to_dict() if self.god_history else None,
            'roundWinner': self.round_winner.value if self.round_winner else None,
            'ranking': [s.to_dict() for s in self.ranking] if self.ranking is not None else None,
            'blockchainRegistered': self.blockchain_registered,
            'createdAt': self.created_at,
        }
