from flask import Blueprint, jsonify
from divine_wrath import engine
from divine_wrath.errors import NotFoundError

rooms = Blueprint('rooms', __name__)


@rooms.route('', methods=['GET'])
def list_rooms():
    """
    Lists the codes of every live room in this process.
    """
    codes = engine.controller.registry.codes()
    return jsonify({'count': len(codes), 'rooms': codes})


@rooms.route('/<string:room_code>/state', methods=['GET'])
def get_room_state(room_code):
    """
    Returns the full state of a room.
    """
    try:
        return jsonify(engine.controller.snapshot(room_code))
    except NotFoundError as exc:
        return jsonify({'error': exc.message}), 404
