from flask import Blueprint, current_app, jsonify
from divine_wrath import engine

main = Blueprint('main', __name__)

@main.route('/')
def index():
    cfg = current_app.config
    relayer = engine.relayer
    return jsonify({
        'status': 'ok',
        'message': 'Divine Wrath game server',
        'blockchain': {
            'enabled': bool(cfg.get('USE_BLOCKCHAIN')),
            'relayerConfigured': bool(relayer and relayer.configured),
            'relayerUrl': relayer.base_url if relayer else None,
            'contractId': cfg.get('DIVINE_WRATH_CONTRACT_ID'),
        },
        'rooms': len(engine.controller.registry),
    })
