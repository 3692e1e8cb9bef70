# map_relay/__init__.py
# Application factory: Flask app + SocketIO wired to the relay components

import os
import logging

from flask import Flask
from flask_socketio import SocketIO

from map_relay import config
from map_relay.broadcast import BroadcastRouter
from map_relay.repository import StateRepository
from map_relay.routes_core import core_bp
from map_relay.sessions import SessionRegistry
from map_relay.sockets import register_socket_handlers
from map_relay.store import RecordStore, PersistenceMirror, NullMirror, load_into


def create_app(overrides=None):
    """Create and configure the Flask application.

    The SocketIO instance is available as app.extensions['socketio'] and the relay
    components as app.extensions['map_relay'].
    """
    app = Flask(__name__)
    app.config['SECRET_KEY'] = os.urandom(24)
    app.config.update(config.as_dict())
    if overrides:
        app.config.update(overrides)

    # Initialize SocketIO
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

    repository = StateRepository()
    registry = SessionRegistry()

    # Seed state from the record store; failures leave the repository empty
    store = None
    if app.config['PERSISTENCE_ENABLED']:
        store = RecordStore(app.config['RECORD_STORE_PATH'])
        load_into(store, repository)
        mirror = PersistenceMirror(store)
    else:
        logging.info("Persistence disabled, state lives in memory only.")
        mirror = NullMirror()

    router = BroadcastRouter(registry, lambda event, payload, sid: socketio.emit(event, payload, to=sid))

    app.extensions['map_relay'] = {
        'repository': repository,
        'registry': registry,
        'router': router,
        'store': store,
        'mirror': mirror,
    }

    # Register blueprints
    app.register_blueprint(core_bp)

    # Register socket event handlers
    register_socket_handlers(socketio, repository, registry, router, mirror, app.config['DM_PASSWORD'])

    return app
