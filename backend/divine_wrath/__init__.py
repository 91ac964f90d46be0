from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
import click
from config import Config
from divine_wrath.services.games.engine import GameEngine

socketio = SocketIO(async_mode=None)
engine = GameEngine()


def _allowed_origins(config):
    origins = list(config.get('CORS_ORIGINS') or [])
    if config.get('FRONTEND_URL'):
        origins.append(config['FRONTEND_URL'])
    return origins


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = _allowed_origins(flask_app.config)

    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)
    engine.init_app(flask_app, socketio)

    from divine_wrath.main import main
    flask_app.register_blueprint(main)

    from divine_wrath.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from divine_wrath.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    @click.command('relayer-status')
    def relayer_status_command():
        """Prints the delegated verification configuration."""
        relayer = engine.relayer
        click.echo(f"blockchain enabled: {bool(flask_app.config.get('USE_BLOCKCHAIN'))}")
        click.echo(f"relayer configured: {bool(relayer and relayer.configured)}")
        click.echo(f"relayer url: {relayer.base_url if relayer else None}")
        click.echo(f"contract id: {flask_app.config.get('DIVINE_WRATH_CONTRACT_ID')}")

    flask_app.cli.add_command(relayer_status_command)

    return flask_app
