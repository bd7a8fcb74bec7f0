"""Flask entry point for the game library ingestion service."""

from __future__ import annotations

import logging
import logging.config
import os
import threading
from pathlib import Path

from flask import Flask, jsonify, request

from auth.identity import IdentityClient, IdentityValidator
from catalog.store import CatalogStore
from config import (
    APP_SECRET_KEY,
    DB_CONNECT_TIMEOUT_SECONDS,
    DB_DSN,
    FLASK_DEBUG,
    IDENTITY_TIMEOUT_SECONDS,
    IDENTITY_URL,
    IGDB_USER_AGENT,
    IMAGE_TIMEOUT_SECONDS,
    INGEST_MAX_IN_FLIGHT,
    INGEST_MAX_ITEMS,
    INGEST_TIMEOUT_SECONDS,
    LOG_FILE,
    SOURCE_TIMEOUT_SECONDS,
    TWITCH_CLIENT_ID,
    TWITCH_CLIENT_SECRET,
    UPLOAD_DIR,
    validate_igdb_credentials,
)
from db.utils import DatabaseEngine, build_engine_from_dsn
from igdb.client import IGDBClient
from ingestion.orchestrator import IngestionOrchestrator, IngestionServices
from init import initialize_app
from routes import games as routes_games
from sources.http import HttpFetcher
from storage.blobs import BlobStore
from web.app_factory import create_app

logger = logging.getLogger(__name__)

# 100 names of a few hundred bytes each fit comfortably.
MAX_REQUEST_BYTES = 1024 * 1024


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug or FLASK_DEBUG:
        return logging.DEBUG
    return logging.INFO


def _configure_logging(flask_app: Flask) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(LOG_FILE)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    flask_app.logger = logging.getLogger(flask_app.import_name)
    flask_app.logger.setLevel(log_level)


app = Flask(__name__)
app.secret_key = APP_SECRET_KEY
app.config['MAX_CONTENT_LENGTH'] = MAX_REQUEST_BYTES

_configure_logging(app)


def ensure_dirs() -> None:
    os.makedirs(UPLOAD_DIR, exist_ok=True)


def _db_connection_factory() -> DatabaseEngine:
    return build_engine_from_dsn(DB_DSN, timeout=DB_CONNECT_TIMEOUT_SECONDS)


def _build_igdb_client() -> IGDBClient | None:
    if not validate_igdb_credentials():
        logger.warning("Catalog ingestion disabled until Twitch credentials are set")
        return None
    return IGDBClient(
        client_id=TWITCH_CLIENT_ID,
        client_secret=TWITCH_CLIENT_SECRET,
        user_agent=IGDB_USER_AGENT,
    )


def _build_services(engine: DatabaseEngine) -> IngestionServices:
    return IngestionServices(
        fetcher=HttpFetcher(),
        store=CatalogStore(engine),
        blobs=BlobStore(UPLOAD_DIR),
        igdb_client=_build_igdb_client(),
        source_timeout=SOURCE_TIMEOUT_SECONDS,
        image_timeout=IMAGE_TIMEOUT_SECONDS,
    )


_state_lock = threading.Lock()
_services: IngestionServices | None = None
_orchestrator: IngestionOrchestrator | None = None
_identity: IdentityValidator | None = None


def set_services(
    services: IngestionServices,
    *,
    identity: IdentityValidator | None = None,
    orchestrator: IngestionOrchestrator | None = None,
) -> None:
    """Install the collaborators used by the API; tests pass fakes here."""

    global _services, _orchestrator, _identity

    _services = services
    _orchestrator = orchestrator or IngestionOrchestrator(
        services.build_pipeline,
        max_items=INGEST_MAX_ITEMS,
        max_in_flight=INGEST_MAX_IN_FLIGHT,
        timeout=INGEST_TIMEOUT_SECONDS,
    )
    _identity = identity or IdentityClient(
        IDENTITY_URL, services.fetcher, timeout=IDENTITY_TIMEOUT_SECONDS
    )


def get_services() -> IngestionServices:
    with _state_lock:
        if _services is None:
            set_services(
                initialize_app(
                    ensure_dirs=ensure_dirs,
                    connection_factory=_db_connection_factory,
                    build_services=_build_services,
                )
            )
        return _services  # type: ignore[return-value]


def get_orchestrator() -> IngestionOrchestrator:
    get_services()
    return _orchestrator  # type: ignore[return-value]


def get_identity() -> IdentityValidator:
    get_services()
    return _identity  # type: ignore[return-value]


def catalog_enabled() -> bool:
    return get_services().catalog_enabled


@app.errorhandler(Exception)
def handle_exception(e):
    app.logger.exception("Unhandled exception")
    if request.path.startswith('/api/'):
        return jsonify({'error': 'internal server error'}), 500
    return "Internal Server Error", 500


_blueprints_configured = False


def configure_blueprints(flask_app: Flask) -> None:
    global _blueprints_configured
    if _blueprints_configured:
        return

    routes_games.configure({
        'get_orchestrator': get_orchestrator,
        'get_identity': get_identity,
        'catalog_enabled': catalog_enabled,
    })

    if 'games' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_games.games_blueprint)

    _blueprints_configured = True


app = create_app(app, configure_blueprints=configure_blueprints)


if __name__ == '__main__':
    get_services()
    app.run(debug=FLASK_DEBUG)
