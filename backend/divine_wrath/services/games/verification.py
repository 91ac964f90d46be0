"""Claim verification strategies.

``LocalGeometricVerifier`` decides a claim from grid positions alone.
``DelegatedVerifier`` asks the relayer to check the claimant's proof and
raises ExternalServiceError when it cannot; the engine then answers with
the local check and marks the provenance ``local_fallback``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from divine_wrath.errors import ExternalServiceError
from divine_wrath.models import ClaimType, ClaimValue, Provenance
from .relayer import RelayerClient
from .rules import are_adjacent, column_of, row_of


@dataclass(frozen=True)
class VerificationResult:
    is_true: bool
    provenance: Provenance
    error: Optional[str] = None


@dataclass(frozen=True)
class DelegatedProof:
    """Proof plus the on-chain coordinates needed to check it."""

    payload: Dict[str, Any]
    expected: bool
    public_value: Optional[ClaimValue]
    session_id: Optional[int]
    subject_address: str


class ClaimVerifier(ABC):
    @abstractmethod
    def verify(self, claimant_position: Optional[int], target_position: Optional[int],
               claim_type: ClaimType, claim_value: ClaimValue,
               proof: Optional[DelegatedProof] = None) -> VerificationResult:
        """Decide a claim. Raises ExternalServiceError only for transport/config problems."""


class LocalGeometricVerifier(ClaimVerifier):
    def verify(self, claimant_position, target_position, claim_type, claim_value, proof=None):
        return VerificationResult(
            is_true=self.evaluate(claimant_position, target_position, claim_type, claim_value),
            provenance=Provenance.LOCAL,
        )

    @staticmethod
    def evaluate(claimant_position: Optional[int], target_position: Optional[int],
                 claim_type: ClaimType, claim_value: ClaimValue) -> bool:
        if target_position is None:
            return False
        if claim_type is ClaimType.ROW:
            return row_of(target_position) == claim_value
        if claim_type is ClaimType.COLUMN:
            return column_of(target_position) == claim_value
        if claim_type is ClaimType.ADJACENT:
            if claimant_position is None:
                return False
            return are_adjacent(claimant_position, target_position)
        return False


class DelegatedVerifier(ClaimVerifier):
    def __init__(self, relayer: RelayerClient):
        self.relayer = relayer

    def verify(self, claimant_position, target_position, claim_type, claim_value, proof=None):
        if proof is None:
            raise ExternalServiceError('No proof attached to claim')
        if not proof.session_id:
            raise ExternalServiceError('Game not registered on blockchain')
        result = self.relayer.submit_claim(
            proof.session_id,
            proof.subject_address,
            claim_type,
            proof.public_value,
            proof.expected,
            proof.payload,
        )
        return VerificationResult(is_true=result, provenance=Provenance.DELEGATED)

