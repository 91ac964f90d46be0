"""Command handlers for every room.

Each handler runs under the room's lock and follows the same order: the room
exists, the phase allows the command, the acting player holds the required
role, command preconditions hold. Any failed check raises before the first
mutation. Handlers return the events to broadcast; timer and background
registration results are published through ``publish``.
"""

import logging
import random
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from divine_wrath.errors import ExternalServiceError, NotFoundError, ValidationError
from divine_wrath.models import (
    ExternalProof,
    GodChoice,
    Phase,
    Player,
    Provenance,
    RoundWinner,
    ScoreAction,
    Session,
)
from . import rules
from .attacks import AttackResolver
from .claims import ClaimLedger, parse_claim
from .events import Event, player_event, room_event
from .registry import RoomRegistry
from .relayer import RelayerClient, player_address, session_id_for
from .rounds import RoundManager
from .scheduler import RoundTimerScheduler
from .scoring import ScoreBook
from .verification import ClaimVerifier, DelegatedProof, LocalGeometricVerifier, VerificationResult

logger = logging.getLogger(__name__)


def _inline(fn, *args, **kwargs):
    return fn(*args, **kwargs)


class PhaseController:
    def __init__(
        self,
        registry: Optional[RoomRegistry] = None,
        rng: Optional[random.Random] = None,
        scheduler: Optional[RoundTimerScheduler] = None,
        local_verifier: Optional[ClaimVerifier] = None,
        delegated_verifier: Optional[ClaimVerifier] = None,
        registrar: Optional[RelayerClient] = None,
        publish: Optional[Callable[[List[Event]], None]] = None,
        spawn: Optional[Callable[..., Any]] = None,
    ):
        self.rng = rng or random.Random()
        self.registry = registry or RoomRegistry(self.rng)
        self.scheduler = scheduler or RoundTimerScheduler(enabled=False)
        self.local_verifier = local_verifier or LocalGeometricVerifier()
        self.delegated_verifier = delegated_verifier
        self.registrar = registrar
        self.publish = publish or (lambda events: None)
        self.spawn = spawn or _inline

    # ---- guards ----

    @staticmethod
    def _require_phase(session: Session, *phases: Phase) -> None:
        if session.phase not in phases:
            raise ValidationError(
                f'Not allowed during {session.phase.value}',
                context={'room': session.code, 'phase': session.phase.value},
            )

    @staticmethod
    def _require_player(session: Session, identity: str) -> Player:
        player = session.find_player(identity)
        if player is None:
            raise ValidationError('You are not in this room', context={'room': session.code})
        return player

    def _require_host(self, session: Session, identity: str, action: str) -> Player:
        player = self._require_player(session, identity)
        if not player.is_host:
            raise ValidationError(f'Only host can {action}')
        return player

    def _require_adjudicator(self, session: Session, identity: str, message: str) -> Player:
        player = self._require_player(session, identity)
        if not player.is_adjudicator:
            raise ValidationError(message)
        return player

    def _require_suspect(self, session: Session, identity: str) -> Player:
        player = self._require_player(session, identity)
        if not player.is_suspect:
            raise ValidationError('Only mortals can do that')
        return player

    @staticmethod
    def _require_name(name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Player name is required')
        return name.strip()

    @staticmethod
    def _require_cell(value: Any, what: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value not in rules.GRID_CELLS:
            raise ValidationError(f'Invalid {what}', context={what: value})
        return value

    @staticmethod
    def _avatar(avatar: Any) -> Optional[Dict[str, Any]]:
        return avatar if isinstance(avatar, dict) else None

    # ---- lobby ----

    def create_room(self, identity: str, name: Any, avatar: Any = None, code: Optional[str] = None) -> List[Event]:
        player = Player(identity=identity, name=self._require_name(name), avatar=self._avatar(avatar))
        session = self.registry.create(player, code=code)
        return [player_event(identity, 'room_created', roomCode=session.code, room=session.to_dict())]

    def join_room(self, code: Any, identity: str, name: Any, avatar: Any = None) -> List[Event]:
        with self.registry.locked(code) as session:
            if len(session.players) >= rules.MAX_PLAYERS:
                raise ValidationError('Room is full', code='ROOM_FULL')
            if session.phase is not Phase.LOBBY:
                raise ValidationError('Game already started', code='GAME_STARTED')
            if session.find_player(identity) is not None:
                raise ValidationError('You are already in this room')
            display_name = self._require_name(name)

            session.players.append(Player(identity=identity, name=display_name, avatar=self._avatar(avatar)))
            logger.info(f"[join] room={session.code} player={identity} count={len(session.players)}")
            session.check_invariants()
            return [room_event(session.code, 'room_updated', room=session.to_dict())]

    def toggle_ready(self, code: Any, identity: str) -> List[Event]:
        with self.registry.locked(code) as session:
            if session.phase is Phase.ENDED:
                raise ValidationError('Game is over')
            player = self._require_player(session, identity)

            player.is_ready = not player.is_ready
            return [room_event(session.code, 'room_updated', room=session.to_dict())]

    def set_round_config(self, code: Any, identity: str, total_rounds: Any) -> List[Event]:
        with self.registry.locked(code) as session:
            self._require_phase(session, Phase.LOBBY)
            self._require_host(session, identity, 'configure rounds')
            if isinstance(total_rounds, bool) or total_rounds not in rules.ROUND_OPTIONS:
                raise ValidationError('Invalid round count', context={'total_rounds': total_rounds})

            session.total_rounds = total_rounds
            session.check_invariants()
            return [room_event(session.code, 'room_updated', room=session.to_dict())]

    def start_game(self, code: Any, identity: str) -> List[Event]:
        registration = None
        with self.registry.locked(code) as session:
            self._require_phase(session, Phase.LOBBY)
            self._require_host(session, identity, 'start the game')
            if len(session.players) != rules.MAX_PLAYERS:
                raise ValidationError(f'Need {rules.MAX_PLAYERS} players to start')

            god = RoundManager(session, ScoreBook(session), self.rng).assign_roles()
            if self.registrar is not None:
                session.blockchain_session_id = session_id_for(session.code)
                session.blockchain_registered = False
                registration = (
                    session.code,
                    session.blockchain_session_id,
                    god.identity,
                    [p.identity for p in session.suspects],
                )
            logger.info(f"[start] room={session.code} rounds={session.total_rounds}")
            session.check_invariants()
            events = [room_event(session.code, 'game_started', room=session.to_dict())]
        if registration is not None:
            self.spawn(self._register_session, *registration)
        return events

    def _register_session(self, code: str, session_id: int, god: str, mortals: List[str]) -> None:
        """Register a started game with the relayer; runs outside the room lock."""
        error = None
        try:
            self.registrar.start_game(session_id, code, god, mortals)
        except ExternalServiceError as e:
            error = e.message
            logger.warning(f"[register-failed] room={code} session={session_id} error={error}")
        try:
            with self.registry.locked(code) as session:
                if session.blockchain_session_id != session_id:
                    return
                session.blockchain_registered = error is None
        except NotFoundError:
            logger.info(f"[register-stale] room={code} no longer exists")
            return
        if error is not None:
            self.publish([room_event(code, 'blockchain_result', success=False, stage='register', error=error)])
        else:
            logger.info(f"[register-ok] room={code} session={session_id}")

    # ---- setup / claiming ----

    def select_position(self, code: Any, identity: str, position: Any) -> List[Event]:
        with self.registry.locked(code) as session:
            self._require_phase(session, Phase.SETUP)
            player = self._require_suspect(session, identity)
            cell = self._require_cell(position, 'position')
            occupant = session.occupant_of(cell)
            if occupant is not None and occupant is not player:
                raise ValidationError('Position already taken', context={'position': cell})

            player.position = cell
            all_placed = all(p.is_placed for p in session.suspects)
            if all_placed:
                session.phase = Phase.CLAIMING
            events = [room_event(session.code, 'room_updated', room=session.to_dict())]
            if all_placed:
                events.append(room_event(session.code, 'phase_changed', phase=Phase.CLAIMING.value, room=session.to_dict()))
            session.check_invariants()
            return events

    def submit_claim(self, code: Any, identity: str, target_id: Any, claim_type: Any, claim_value: Any = None,
                     proof: Any = None) -> List[Event]:
        with self.registry.locked(code) as session:
            self._require_phase(session, Phase.CLAIMING)
            claimant = self._require_suspect(session, identity)
            ctype, value = parse_claim(claim_type, claim_value)
            ledger = ClaimLedger(session)
            target = ledger.validate(claimant, target_id, ctype, value)
            # Only the subject of a claim can prove their own position
            external = ExternalProof.from_payload(proof) if target is claimant else None

            claim = ledger.record(claimant, target, ctype, value, external)
            logger.info(f"[claim] room={session.code} claim={claim.id} type={ctype.value} proof={external is not None}")
            events = [room_event(session.code, 'claim_submitted', claim=claim.to_dict(), room=session.to_dict())]
            if ledger.is_complete():
                session.phase = Phase.DEDUCTION
                events.append(room_event(session.code, 'phase_changed', phase=Phase.DEDUCTION.value, room=session.to_dict()))
            session.check_invariants()
            return events

    # ---- deduction ----

    def verify_claim(self, code: Any, identity: str, claim_id: Any) -> List[Event]:
        with self.registry.locked(code) as session:
            self._require_phase(session, Phase.DEDUCTION)
            self._require_adjudicator(session, identity, 'Only God can verify claims')
            if session.verifications_remaining <= 0:
                raise ValidationError('No verifications remaining this turn')
            claim = ClaimLedger(session).find(claim_id) if isinstance(claim_id, str) else None
            if claim is None:
                raise NotFoundError('Claim not found', context={'claim': claim_id})
            if claim.verified:
                raise ValidationError('Claim already verified')

            claimant = session.find_player(claim.claimant_id)
            target = session.find_player(claim.target_id)
            result = self._decide(
                session,
                claimant.position if claimant else None,
                target.position if target else None,
                claim,
            )

            claim.verified = True
            claim.is_true = result.is_true
            claim.provenance = result.provenance
            claim.verified_on_chain = result.provenance is Provenance.DELEGATED
            claim.blockchain_error = result.error
            if claim.is_true and claim.is_self_claim:
                ScoreBook(session).award(claim.claimant_id, ScoreAction.TRUE_SELF_CLAIM, rules.TRUE_SELF_CLAIM)
            session.verifications_remaining -= 1
            logger.info(
                f"[verify] room={session.code} claim={claim.id} result={claim.is_true} "
                f"provenance={result.provenance.value} remaining={session.verifications_remaining}"
            )
            session.check_invariants()
            payload = {
                'claim': claim.to_dict(),
                'verificationsRemaining': session.verifications_remaining,
                'room': session.to_dict(),
                'provenance': result.provenance.value,
                'verifiedOnChain': claim.verified_on_chain,
            }
            if result.error:
                payload['blockchainError'] = result.error
            return [room_event(session.code, 'claim_verified', **payload)]

    def _decide(self, session: Session, claimant_position, target_position, claim) -> VerificationResult:
        """Delegated check for proof-carrying claims, local check otherwise or on failure."""
        args = (claimant_position, target_position, claim.claim_type, claim.claim_value)
        if claim.external_proof is None or self.delegated_verifier is None:
            return self.local_verifier.verify(*args)
        proof = DelegatedProof(
            payload=claim.external_proof.proof,
            expected=claim.external_proof.is_true,
            public_value=claim.public_value,
            session_id=session.blockchain_session_id if session.blockchain_registered else None,
            subject_address=player_address(session.code, claim.target_id),
        )
        try:
            return self.delegated_verifier.verify(*args, proof=proof)
        except ExternalServiceError as e:
            logger.warning(f"[verify-fallback] room={session.code} claim={claim.id} error={e.message}")
            local = self.local_verifier.verify(*args)
            return replace(local, provenance=Provenance.LOCAL_FALLBACK, error=e.message)

    def attack_cell(self, code: Any, identity: str, cell: Any) -> List[Event]:
        with self.registry.locked(code) as session:
            self._require_phase(session, Phase.DEDUCTION)
            god = self._require_adjudicator(session, identity, 'Only God can attack')
            target_cell = self._require_cell(cell, 'cell')

            resolver = AttackResolver(session, ScoreBook(session))
            outcome = resolver.resolve(god, target_cell)
            logger.info(f"[attack] room={session.code} cell={target_cell} hit={outcome.attack.hit} turn={session.turn}")
            events = [room_event(
                session.code, 'attack_result',
                cell=target_cell,
                hit=outcome.attack.hit,
                victimName=outcome.attack.victim_name,
                room=session.to_dict(),
            )]
            if outcome.round_winner is None:
                resolver.open_next_turn()
                events.append(room_event(session.code, 'phase_changed', phase=Phase.CLAIMING.value, room=session.to_dict()))
            else:
                events.extend(self._end_round(session, outcome.round_winner))
            session.check_invariants()
            return events

    # ---- round transition ----

    def _end_round(self, session: Session, winner: RoundWinner) -> List[Event]:
        rounds = RoundManager(session, ScoreBook(session), self.rng)
        if rounds.end_round(winner):
            ranking = [s.to_dict() for s in session.ranking]
            return [room_event(
                session.code, 'game_ended',
                winner=ranking[0]['playerId'] if ranking else None,
                ranking=ranking,
                room=session.to_dict(),
                isFinalRound=True,
            )]
        if winner is RoundWinner.SUSPECTS:
            self.scheduler.schedule(session.code, session.transition_generation, self._fire_round_timer)
            return [room_event(session.code, 'round_ended', room=session.to_dict(), winner=winner.value,
                               needsGodChoice=False)]
        god = session.adjudicator
        return [room_event(
            session.code, 'round_ended',
            room=session.to_dict(),
            winner=winner.value,
            needsGodChoice=True,
            canStay=rounds.can_stay(),
            godPlayerId=god.identity if god else None,
        )]

    def _fire_round_timer(self, code: str, generation: int) -> List[Event]:
        events = self.advance_round(code, generation)
        if events:
            self.publish(events)
        return events

    def advance_round(self, code: str, generation: int) -> List[Event]:
        """Auto-advance after a Suspects win; no-op if the room already moved on."""
        try:
            with self.registry.locked(code) as session:
                if (session.phase is not Phase.ROUND_TRANSITION
                        or session.round_winner is not RoundWinner.SUSPECTS
                        or session.transition_generation != generation):
                    logger.info(
                        f"[timer-abort] room={code} generation={generation} phase={session.phase.value} "
                        f"current_generation={session.transition_generation}"
                    )
                    return []
                RoundManager(session, ScoreBook(session), self.rng).start_next_round(keep_god=False)
                session.check_invariants()
                return [room_event(session.code, 'round_started', room=session.to_dict(),
                                   roundNumber=session.current_round)]
        except NotFoundError:
            logger.info(f"[timer-abort] room={code} generation={generation} room gone")
            return []

    def god_choice(self, code: Any, identity: str, choice: Any) -> List[Event]:
        with self.registry.locked(code) as session:
            self._require_phase(session, Phase.ROUND_TRANSITION)
            self._require_adjudicator(session, identity, 'Only God can make this choice')
            if session.round_winner is not RoundWinner.ADJUDICATOR:
                raise ValidationError('There is no choice to make this round')
            try:
                decision = GodChoice(choice)
            except ValueError:
                raise ValidationError('Invalid choice', context={'choice': choice})
            rounds = RoundManager(session, ScoreBook(session), self.rng)
            if decision is GodChoice.STAY and not rounds.can_stay():
                raise ValidationError(
                    f'Cannot stay as God for {rules.MAX_CONSECUTIVE_GOD_ROUNDS + 1} consecutive rounds after missing'
                )

            if decision is GodChoice.STAY:
                rounds.stay()
            else:
                rounds.start_next_round(keep_god=False)
            self.scheduler.cancel(session.code)
            logger.info(f"[god-choice] room={session.code} choice={decision.value} round={session.current_round}")
            session.check_invariants()
            return [room_event(session.code, 'round_started', room=session.to_dict(),
                               roundNumber=session.current_round)]

    # ---- delegated submission ----

    def submit_claim_blockchain(self, code: Any, identity: str, claim_id: Any, proof: Any = None,
                                public_signals: Any = None) -> List[Event]:
        """Forward a claim's proof to the relayer; failures go back to the caller only."""
        def failure(message: str) -> List[Event]:
            return [player_event(identity, 'blockchain_result', success=False, error=message, claimId=claim_id)]

        if self.registrar is None or not self.registrar.configured:
            return failure('Blockchain not enabled or relayer not configured')
        try:
            with self.registry.locked(code) as session:
                if session.find_player(identity) is None:
                    return failure('You are not in this room')
                claim = ClaimLedger(session).find(claim_id) if isinstance(claim_id, str) else None
                if claim is None:
                    return failure('Claim not found')
                if not session.blockchain_session_id or not session.blockchain_registered:
                    return failure('Game not registered on blockchain yet')
                if not proof or not public_signals:
                    return failure('Proof and public signals are required')
                try:
                    result = self.registrar.submit_claim(
                        session.blockchain_session_id,
                        player_address(session.code, claim.claimant_id),
                        claim.claim_type,
                        claim.public_value,
                        True,
                        proof,
                    )
                except ExternalServiceError as e:
                    logger.warning(f"[relayer-claim-failed] room={session.code} claim={claim.id} error={e.message}")
                    return failure(e.message)

                claim.verified_on_chain = True
                logger.info(f"[relayer-claim-ok] room={session.code} claim={claim.id} result={result}")
                return [
                    player_event(identity, 'blockchain_result', success=True, claimId=claim.id, result=result),
                    room_event(session.code, 'claim_verified_onchain', claim=claim.to_dict(), room=session.to_dict()),
                ]
        except NotFoundError:
            return failure('Room not found')

    # ---- departure ----

    def disconnect(self, identity: str) -> List[Event]:
        """Remove the player from every room they are in.

        Mid-game departures are not reconciled: no forfeiture and no role
        reassignment.
        """
        events: List[Event] = []
        for code in self.registry.codes_for(identity):
            try:
                with self.registry.locked(code) as session:
                    player = session.find_player(identity)
                    if player is None:
                        continue
                    session.players.remove(player)
                    if not session.players:
                        self.scheduler.cancel(code)
                        self.registry.destroy(code)
                        continue
                    if not any(p.is_host for p in session.players):
                        session.players[0].is_host = True
                    logger.info(f"[leave] room={code} player={identity} phase={session.phase.value}")
                    events.append(room_event(code, 'player_left', playerId=identity, room=session.to_dict()))
            except NotFoundError:
                continue
        return events

    # ---- queries ----

    def snapshot(self, code: Any) -> Dict[str, Any]:
        with self.registry.locked(code) as session:
            return session.to_dict()
