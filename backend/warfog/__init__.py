from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from warfog.config import Config
from warfog.errors import WarfogError

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from warfog.main import main
    flask_app.register_blueprint(main)

    from warfog.api.players import players
    from warfog.api.matchmaking import matchmaking
    from warfog.api.game import game
    from warfog.api.settlement import settlement
    flask_app.register_blueprint(players, url_prefix='/api/players')
    flask_app.register_blueprint(matchmaking, url_prefix='/api/matchmaking')
    flask_app.register_blueprint(game, url_prefix='/api/game')
    # /api/match/settle and /api/fees/collect
    flask_app.register_blueprint(settlement, url_prefix='/api')

    from warfog.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @flask_app.errorhandler(WarfogError)
    def handle_domain_error(exc):
        return jsonify({'error': exc.message}), exc.status_code

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from warfog.models import Player
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Two funded guests so wagered matches can be played locally
            for name in ('guest-alpha', 'guest-bravo'):
                db.session.add(Player(username=name, is_guest=True, balance=1))

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('sweep')
    def sweep_command():
        """Runs one pass of the abandoned-turn and stale-queue sweeps."""
        from warfog.services.sweeps import sweep_abandoned_turns, sweep_stale_queue
        with flask_app.app_context():
            forfeited = sweep_abandoned_turns()
            refunded = sweep_stale_queue()
            print(f'Forfeited {len(forfeited)} match(es), expired {len(refunded)} queue entr(ies)')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(sweep_command)

    return flask_app
