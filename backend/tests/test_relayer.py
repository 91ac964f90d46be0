import random

import pytest
import requests

from divine_wrath.errors import ExternalServiceError
from divine_wrath.models import ClaimType, Phase, Provenance
from divine_wrath.services.games.controller import PhaseController
from divine_wrath.services.games.relayer import (
    RelayerClient,
    claim_value_for_circuit,
    player_address,
    session_id_for,
)
from divine_wrath.services.games.verification import DelegatedVerifier

PROOF = {'proof': {'pi_a': ['1', '2']}, 'publicSignals': ['1', '0'], 'isTrue': True}


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=''):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError('no json')
        return self._body


class FakeHTTP:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(body={})
        self.error = error
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response


def test_session_id_is_stable_and_unsigned():
    assert session_id_for('ABC123') == session_id_for('ABC123')
    assert session_id_for('ABC123') != session_id_for('ABC124')
    for code in ('ZZZZZZ', '999999', 'HJKLMN'):
        assert 0 <= session_id_for(code) < 2 ** 32


def test_player_address_shape():
    address = player_address('ABC123', 'sid-1')
    assert address.startswith('G')
    assert len(address) == 56
    assert address == player_address('ABC123', 'sid-1')
    assert address != player_address('ABC124', 'sid-1')


def test_circuit_values_are_zero_based_for_rows_and_columns():
    assert claim_value_for_circuit(ClaimType.ROW, 1) == 0
    assert claim_value_for_circuit(ClaimType.COLUMN, 3) == 2
    assert claim_value_for_circuit(ClaimType.ADJACENT, 4) == 4


def test_submit_claim_posts_the_relayer_body():
    http = FakeHTTP(FakeResponse(body={'result': True}))
    client = RelayerClient('http://relayer.local/', api_key='k', timeout=5, session=http)
    assert client.submit_claim(7, 'GADDR', ClaimType.COLUMN, 2, True, {'pi_a': []}) is True
    post = http.posts[0]
    assert post['url'] == 'http://relayer.local/claims'
    assert post['headers'] == {'Authorization': 'Bearer k'}
    assert post['timeout'] == 5
    assert post['json'] == {
        'sessionId': 7,
        'mortalAddress': 'GADDR',
        'claimType': 1,
        'claimValue': 1,
        'expectedResult': True,
        'proof': {'pi_a': []},
    }


def test_start_game_needs_three_mortals():
    http = FakeHTTP()
    client = RelayerClient('http://relayer.local', session=http)
    with pytest.raises(ExternalServiceError):
        client.start_game(1, 'ABC123', 'g', ['a', 'b'])
    client.start_game(1, 'ABC123', 'g', ['a', 'b', 'c'])
    assert http.posts[0]['url'].endswith('/start-game')
    assert len(http.posts[0]['json']['mortals']) == 3
    assert http.posts[0]['headers'] == {}


@pytest.mark.parametrize('http', [
    FakeHTTP(error=requests.ConnectionError('refused')),
    FakeHTTP(FakeResponse(status_code=502, body={}, text='bad gateway')),
    FakeHTTP(FakeResponse(status_code=200, body=None)),
    FakeHTTP(FakeResponse(body={'result': 'yes'})),
])
def test_relayer_failures_become_external_service_errors(http):
    client = RelayerClient('http://relayer.local', session=http)
    with pytest.raises(ExternalServiceError):
        client.submit_claim(7, 'GADDR', ClaimType.ROW, 1, True, {})


def test_unconfigured_relayer_refuses():
    client = RelayerClient(None, session=FakeHTTP())
    assert client.configured is False
    with pytest.raises(ExternalServiceError, match='not configured'):
        client.start_game(1, 'ABC123', 'g', ['a', 'b', 'c'])


class FakeRelayer:
    """Stands in for RelayerClient at the controller seam."""

    configured = True

    def __init__(self, register_error=None, claim_result=True, claim_error=None):
        self.register_error = register_error
        self.claim_result = claim_result
        self.claim_error = claim_error
        self.registered = []
        self.claims = []

    def start_game(self, session_id, room_code, god, mortals):
        if self.register_error:
            raise ExternalServiceError(self.register_error)
        self.registered.append((session_id, room_code, god, tuple(mortals)))

    def submit_claim(self, session_id, address, claim_type, claim_value, expected, proof):
        self.claims.append((session_id, address, claim_type, claim_value, expected, proof))
        if self.claim_error:
            raise ExternalServiceError(self.claim_error)
        return self.claim_result


@pytest.fixture()
def delegated(published):
    def build(relayer):
        controller = PhaseController(
            rng=random.Random(7),
            delegated_verifier=DelegatedVerifier(relayer),
            registrar=relayer,
            publish=published.extend,
        )
        code = 'ABC123'
        controller.create_room('p1', 'Ana', code=code)
        for i, name in [(2, 'Ben'), (3, 'Cleo'), (4, 'Dev')]:
            controller.join_room(code, f'p{i}', name)
        controller.start_game(code, 'p1')
        session = controller.registry.get(code)
        for suspect, cell in zip(session.suspects, (1, 5, 9)):
            controller.select_position(code, suspect.identity, cell)
        return controller, session
    return build


def _claim_round(controller, session, proof=PROOF):
    a, b, c = session.suspects
    controller.submit_claim(session.code, a.identity, a.identity, 'row', 1, proof)
    controller.submit_claim(session.code, b.identity, b.identity, 'column', 2, proof)
    controller.submit_claim(session.code, c.identity, a.identity, 'column', 1)
    assert session.phase is Phase.DEDUCTION
    return session.claims


def test_start_registers_the_game(delegated):
    relayer = FakeRelayer()
    controller, session = delegated(relayer)
    assert session.blockchain_session_id == session_id_for('ABC123')
    assert session.blockchain_registered is True
    session_id, code, god, mortals = relayer.registered[0]
    assert (session_id, code, god) == (session.blockchain_session_id, 'ABC123', session.adjudicator.identity)
    assert set(mortals) == {p.identity for p in session.suspects}


def test_proof_backed_claim_is_verified_by_the_relayer(delegated):
    relayer = FakeRelayer(claim_result=False)
    controller, session = delegated(relayer)
    own_row = _claim_round(controller, session)[0]

    events = controller.verify_claim(session.code, session.adjudicator.identity, own_row.id)
    payload = events[0].payload
    assert payload['provenance'] == Provenance.DELEGATED.value
    assert payload['verifiedOnChain'] is True
    # The relayer's answer wins even when the grid says otherwise
    assert payload['claim']['isTrue'] is False
    assert 'blockchainError' not in payload
    session_id, address, ctype, value, expected, proof = relayer.claims[0]
    assert address == player_address(session.code, own_row.claimant_id)
    assert (ctype, value, expected) == (ClaimType.ROW, 1, True)
    assert proof == PROOF['proof']


def test_relayer_failure_falls_back_to_local(delegated):
    relayer = FakeRelayer(claim_error='Relayer unreachable')
    controller, session = delegated(relayer)
    claims = _claim_round(controller, session)
    suspect = session.find_player(claims[1].claimant_id)

    events = controller.verify_claim(session.code, session.adjudicator.identity, claims[1].id)
    payload = events[0].payload
    assert payload['provenance'] == Provenance.LOCAL_FALLBACK.value
    assert payload['verifiedOnChain'] is False
    assert payload['blockchainError'] == 'Relayer unreachable'
    assert payload['claim']['isTrue'] is True
    assert payload['verificationsRemaining'] == 1
    assert session.scores[suspect.identity].total == 20


def test_claims_without_proof_stay_local(delegated):
    relayer = FakeRelayer()
    controller, session = delegated(relayer)
    about_other = _claim_round(controller, session)[2]
    events = controller.verify_claim(session.code, session.adjudicator.identity, about_other.id)
    assert events[0].payload['provenance'] == Provenance.LOCAL.value
    assert relayer.claims == []


def test_failed_registration_is_broadcast_and_verification_falls_back(delegated, published):
    relayer = FakeRelayer(register_error='contract paused')
    controller, session = delegated(relayer)
    assert session.blockchain_registered is False
    failures = [e for e in published if e.name == 'blockchain_result']
    assert failures[0].payload == {'success': False, 'stage': 'register', 'error': 'contract paused'}

    own_row = _claim_round(controller, session)[0]
    events = controller.verify_claim(session.code, session.adjudicator.identity, own_row.id)
    assert events[0].payload['provenance'] == Provenance.LOCAL_FALLBACK.value
    assert events[0].payload['claim']['isTrue'] is True
    assert relayer.claims == []


def test_submit_claim_blockchain_success(delegated):
    relayer = FakeRelayer(claim_result=True)
    controller, session = delegated(relayer)
    claim = _claim_round(controller, session)[0]
    events = controller.submit_claim_blockchain(
        session.code, claim.claimant_id, claim.id, PROOF['proof'], PROOF['publicSignals'])
    assert [e.name for e in events] == ['blockchain_result', 'claim_verified_onchain']
    assert events[0].target == claim.claimant_id
    assert events[0].payload['success'] is True
    assert claim.verified_on_chain is True
    # Forwarding a proof does not spend the Adjudicator's budget
    assert session.verifications_remaining == 2


@pytest.mark.parametrize('claim_id, proof, message', [
    ('missing', PROOF['proof'], 'Claim not found'),
    (None, PROOF['proof'], 'Claim not found'),
    ('first', None, 'Proof and public signals are required'),
])
def test_submit_claim_blockchain_failures_go_to_the_caller(delegated, claim_id, proof, message):
    relayer = FakeRelayer()
    controller, session = delegated(relayer)
    claim = _claim_round(controller, session)[0]
    if claim_id == 'first':
        claim_id = claim.id
    events = controller.submit_claim_blockchain(session.code, claim.claimant_id, claim_id, proof, ['1'])
    assert [e.name for e in events] == ['blockchain_result']
    assert events[0].payload['success'] is False
    assert events[0].payload['error'] == message
    assert not events[0].to_room


def test_submit_claim_blockchain_without_relayer(controller):
    events = controller.submit_claim_blockchain('ABC123', 'p1', 'x', {}, [])
    assert events[0].payload['error'] == 'Blockchain not enabled or relayer not configured'


def test_adjacent_claim_forwards_the_claimants_cell(delegated):
    relayer = FakeRelayer()
    controller, session = delegated(relayer)
    a, b, c = session.suspects
    controller.submit_claim(session.code, a.identity, b.identity, 'adjacent')
    claim = session.claims[0]
    assert claim.claim_value is True
    assert claim.to_dict()['adjacentTo'] == a.position == 1

    events = controller.submit_claim_blockchain(
        session.code, a.identity, claim.id, PROOF['proof'], PROOF['publicSignals'])
    assert events[0].payload['success'] is True
    _, _, ctype, value, _, _ = relayer.claims[0]
    assert (ctype, value) == (ClaimType.ADJACENT, 1)


def test_relayer_body_carries_the_adjacency_cell():
    http = FakeHTTP(FakeResponse(body={'result': True}))
    client = RelayerClient('http://relayer.local', session=http)
    client.submit_claim(7, 'GADDR', ClaimType.ADJACENT, 4, True, {})
    assert http.posts[0]['json']['claimType'] == 2
    assert http.posts[0]['json']['claimValue'] == 4
