from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8081",
    "http://127.0.0.1:8081",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    _init_services(flask_app)

    from rinkside.api.challenges import challenges
    flask_app.register_blueprint(challenges, url_prefix='/api')

    # Register Socket.IO event handlers on the initialized socketio instance
    from rinkside.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from rinkside.models import Ticket
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed a ticket per demo user for a sample game
            for user_id in ['testuser1', 'testuser2', 'testuser3']:
                db.session.add(Ticket(id=f'{user_id}-ticket', user_id=user_id, name=f'{user_id} card', game_id='2024020100'))

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('sync-once')
    def sync_once_command():
        """Runs a single challenge status sync cycle."""
        result = flask_app.extensions['sync_scheduler'].tick()
        if result is None:
            print('A sync cycle is already running.')
            return
        print(f'Checked {result.games_checked} games, applied {len(result.applied)} transitions, '
              f'{len(result.unresolved_game_ids)} unresolved.')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(sync_once_command)

    return flask_app


def _init_services(flask_app):
    """Build the service graph once per app and expose it on ``app.extensions``."""
    from rinkside.services.game_status import GameStatusCache, GameStatusProvider
    from rinkside.services.membership import MembershipService
    from rinkside.services.realtime import RealtimeChannel
    from rinkside.services.scheduler import SyncScheduler
    from rinkside.services.store import ChallengeStore

    cfg = flask_app.config
    min_members = int(cfg.get('MIN_MEMBERS_TO_ACTIVATE', 2))
    provider = GameStatusProvider(
        base_url=cfg.get('NHL_API_BASE', 'https://api-web.nhle.com/v1'),
        timeout=float(cfg.get('NHL_API_TIMEOUT_SEC', 10)),
        user_agent=cfg.get('NHL_USER_AGENT', 'Hockey-Prediction-App/1.0'),
        cache=GameStatusCache(ttl=float(cfg.get('GAME_STATUS_CACHE_TTL_SEC', 30))),
    )
    store = ChallengeStore()
    channel = RealtimeChannel(socketio)

    flask_app.extensions['game_status_provider'] = provider
    flask_app.extensions['challenge_store'] = store
    flask_app.extensions['realtime_channel'] = channel
    flask_app.extensions['membership'] = MembershipService(
        store, channel, provider,
        min_members=min_members,
        default_max_members=int(cfg.get('DEFAULT_MAX_MEMBERS', 10)),
    )
    flask_app.extensions['sync_scheduler'] = SyncScheduler(
        flask_app, store, provider, channel,
        interval=float(cfg.get('SYNC_INTERVAL_SEC', 60)),
        min_members=min_members,
    )
