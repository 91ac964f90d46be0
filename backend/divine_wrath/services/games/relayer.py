"""HTTP client for the proof relayer.

The relayer submits proof-backed claims and game registrations to the
on-chain contract on behalf of players, so players never need a wallet.
Every failure (missing configuration, transport error, non-2xx response,
malformed body) surfaces as ExternalServiceError.
"""

import base64
import hashlib
import logging
from typing import Any, Dict, List, Optional

import requests

from divine_wrath.errors import ExternalServiceError
from divine_wrath.models import ClaimType, ClaimValue

logger = logging.getLogger(__name__)

CLAIM_TYPE_NUMBERS = {
    ClaimType.ROW: 0,
    ClaimType.COLUMN: 1,
    ClaimType.ADJACENT: 2,
}


def session_id_for(room_code: str) -> int:
    """Derive the numeric on-chain session id (u32) from a room code."""
    h = 0
    for ch in room_code:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def player_address(room_code: str, identity: str) -> str:
    """Deterministic per-room address for a player without a wallet."""
    digest = hashlib.sha512(f"{room_code}-{identity}".encode('utf-8')).digest()
    return 'G' + base64.b32encode(digest).decode('ascii').rstrip('=')[:55]


def claim_value_for_circuit(claim_type: ClaimType, claim_value: ClaimValue) -> int:
    # Circuit rows/columns are 0-based; adjacency carries a grid cell (1..9) as is
    if claim_type in (ClaimType.ROW, ClaimType.COLUMN):
        return int(claim_value) - 1
    return int(claim_value)


class RelayerClient:
    def __init__(self, base_url: Optional[str], api_key: Optional[str] = None, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/') if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self._http = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.configured:
            raise ExternalServiceError('Relayer not configured')
        headers = {'Authorization': f'Bearer {self.api_key}'} if self.api_key else {}
        url = f"{self.base_url}{path}"
        try:
            response = self._http.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalServiceError(f'Relayer unreachable: {e}', context={'url': url}) from e
        if response.status_code >= 300:
            raise ExternalServiceError(
                f'Relayer rejected request ({response.status_code})',
                context={'url': url, 'body': response.text[:200]},
            )
        try:
            return response.json() or {}
        except ValueError as e:
            raise ExternalServiceError('Relayer returned malformed JSON', context={'url': url}) from e

    def start_game(self, session_id: int, room_code: str, god: str, mortals: List[str]) -> None:
        if len(mortals) != 3:
            raise ExternalServiceError('Exactly 3 mortals required')
        body = {
            'sessionId': session_id,
            'god': player_address(room_code, god),
            'mortals': [player_address(room_code, m) for m in mortals],
        }
        logger.info(f"[relayer-start] session={session_id} room={room_code}")
        self._post('/start-game', body)

    def submit_claim(self, session_id: int, mortal_address: str, claim_type: ClaimType,
                     claim_value: ClaimValue, expected_result: bool, proof: Dict[str, Any]) -> bool:
        body = {
            'sessionId': session_id,
            'mortalAddress': mortal_address,
            'claimType': CLAIM_TYPE_NUMBERS[claim_type],
            'claimValue': claim_value_for_circuit(claim_type, claim_value),
            'expectedResult': expected_result,
            'proof': proof,
        }
        logger.info(f"[relayer-claim] session={session_id} type={claim_type.value} value={claim_value}")
        data = self._post('/claims', body)
        result = data.get('result', expected_result)
        if not isinstance(result, bool):
            raise ExternalServiceError('Relayer returned a non-boolean result', context={'result': result})
        return result
