from flask import request
from flask_socketio import join_room, emit
from divine_wrath import engine, socketio
from divine_wrath.errors import NotFoundError, ValidationError
from divine_wrath.services.games.engine import NAMESPACE, room_channel
from divine_wrath.services.games.registry import normalize_code
from typing import Any, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _dispatch(command: Callable[..., List[Any]], *args) -> Optional[List[Any]]:
    """Run an engine command; report rejections to the caller only."""
    try:
        events = command(*args)
    except (ValidationError, NotFoundError) as exc:
        logger.info(f"[rejected] sid={_get_sid()} command={command.__name__} error={exc}")
        emit('error', exc.to_dict())
        return None
    engine.publish(events)
    return events


def _payload(data) -> Dict[str, Any]:
    return data if isinstance(data, dict) else {}


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(*args):
    engine.publish(engine.controller.disconnect(_get_sid()))


def handle_create_room(data):
    data = _payload(data)
    sid = _get_sid()
    try:
        events = engine.controller.create_room(sid, data.get('playerName'), data.get('avatar'))
    except ValidationError as exc:
        emit('error', exc.to_dict())
        return
    join_room(room_channel(events[0].payload['roomCode']))
    engine.publish(events)


def handle_join_room(data):
    data = _payload(data)
    code = normalize_code(data.get('roomCode'))
    sid = _get_sid()
    try:
        events = engine.controller.join_room(code, sid, data.get('playerName'), data.get('avatar'))
    except (ValidationError, NotFoundError) as exc:
        logger.info(f"[rejected] sid={sid} command=join_room error={exc}")
        emit('error', exc.to_dict())
        return
    # Subscribe only once seated, before the broadcast
    join_room(room_channel(code))
    engine.publish(events)


def handle_toggle_ready(data):
    data = _payload(data)
    _dispatch(engine.controller.toggle_ready, data.get('roomCode'), _get_sid())


def handle_set_round_config(data):
    data = _payload(data)
    _dispatch(engine.controller.set_round_config, data.get('roomCode'), _get_sid(), data.get('totalRounds'))


def handle_start_game(data):
    data = _payload(data)
    _dispatch(engine.controller.start_game, data.get('roomCode'), _get_sid())


def handle_select_position(data):
    data = _payload(data)
    _dispatch(engine.controller.select_position, data.get('roomCode'), _get_sid(), data.get('position'))


def handle_submit_claim(data):
    data = _payload(data)
    _dispatch(
        engine.controller.submit_claim,
        data.get('roomCode'),
        _get_sid(),
        data.get('targetPlayerId'),
        data.get('claimType'),
        data.get('claimValue'),
        data.get('zkProof'),
    )


def handle_verify_claim(data):
    data = _payload(data)
    _dispatch(engine.controller.verify_claim, data.get('roomCode'), _get_sid(), data.get('claimId'))


def handle_attack_cell(data):
    data = _payload(data)
    _dispatch(engine.controller.attack_cell, data.get('roomCode'), _get_sid(), data.get('cell'))


def handle_god_choice(data):
    data = _payload(data)
    _dispatch(engine.controller.god_choice, data.get('roomCode'), _get_sid(), data.get('choice'))


def handle_submit_claim_blockchain(data):
    data = _payload(data)
    engine.publish(engine.controller.submit_claim_blockchain(
        data.get('roomCode'),
        _get_sid(),
        data.get('claimId'),
        data.get('proof'),
        data.get('publicSignals'),
    ))


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the game namespace."""
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'create_room': handle_create_room,
        'join_room': handle_join_room,
        'toggle_ready': handle_toggle_ready,
        'set_round_config': handle_set_round_config,
        'start_game': handle_start_game,
        'select_position': handle_select_position,
        'submit_claim': handle_submit_claim,
        'verify_claim': handle_verify_claim,
        'attack_cell': handle_attack_cell,
        'god_choice': handle_god_choice,
        'submit_claim_blockchain': handle_submit_claim_blockchain,
    }
    for name, handler in handlers.items():
        socketio.on_event(name, handler, namespace=NAMESPACE)
