"""Flask application for backup management.

Serves the REST API and WebSocket endpoint:

    GET    /api/status
    GET    /api/backups
    POST   /api/backups
    DELETE /api/backups/<filename>
    POST   /api/backups/cleanup
    POST   /api/export
    POST   /api/restore
    GET    /api/settings
    PUT    /api/settings
    WS     /ws/live
"""

import json
import logging
import os
from pathlib import Path

from flask import Flask
from flask_sock import Sock

from snapkeeper.backup.backup_config import (
    BACKUP_INTERVAL_SECONDS,
    DEFAULT_DB_PATH,
    MAX_BACKUPS,
    SETTINGS_DB_NAME,
)
from snapkeeper.backup.backup_manager import BackupManager
from snapkeeper.backup.scheduler import BackupScheduler
from snapkeeper.dashboard.api.routes import api, init_routes
from snapkeeper.dashboard.live_events import LiveEventHub
from snapkeeper.database.settings_store import SettingsStore

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = str(PROJECT_ROOT / "config" / "config.json")


def load_config(config_path: str = None) -> dict:
    """Read the JSON config file; a missing file means all defaults."""
    cfg_path = config_path or DEFAULT_CONFIG_PATH
    if not os.path.isfile(cfg_path):
        logger.debug("No config file at %s, using defaults", cfg_path)
        return {}
    with open(cfg_path) as f:
        return json.load(f)


def build_services(config: dict) -> tuple[SettingsStore, BackupManager, BackupScheduler]:
    """Construct the settings store, backup manager and scheduler from config."""
    db_path = os.path.expanduser(
        config.get("database", {}).get("path") or DEFAULT_DB_PATH
    )
    settings_path = os.path.expanduser(
        config.get("settings", {}).get("path")
        or os.path.join(os.path.dirname(db_path), SETTINGS_DB_NAME)
    )
    backup_cfg = config.get("backup", {})

    settings = SettingsStore(settings_path)
    default_folder = backup_cfg.get("default_folder")
    backup_manager = BackupManager(
        db_path=db_path,
        settings=settings,
        default_folder=os.path.expanduser(default_folder) if default_folder else None,
        max_backups=backup_cfg.get("max_backups", MAX_BACKUPS),
    )
    scheduler = BackupScheduler(
        settings=settings,
        backup_manager=backup_manager,
        interval=backup_cfg.get("interval_seconds", BACKUP_INTERVAL_SECONDS),
    )
    return settings, backup_manager, scheduler


def create_app(
    config_path: str = None,
    settings: SettingsStore = None,
    backup_manager: BackupManager = None,
    scheduler: BackupScheduler = None,
) -> Flask:
    """Application factory.

    Accepts a pre-built backup manager (for testing) or constructs all
    services from config. The scheduler is not started here.
    """
    if backup_manager is None:
        settings, backup_manager, scheduler = build_services(load_config(config_path))
    settings = settings or backup_manager.settings

    event_hub = LiveEventHub()

    app = Flask(__name__)
    sock = Sock(app)

    init_routes(
        backup_manager=backup_manager,
        scheduler=scheduler,
        settings=settings,
        event_hub=event_hub,
    )
    app.register_blueprint(api)

    # WebSocket: /ws/live
    @sock.route("/ws/live")
    def ws_live(ws):
        event_hub.subscribe(ws)
        try:
            while True:
                # Keep connection alive; client can send pings
                data = ws.receive(timeout=60)
                if data is None:
                    break
        except Exception as exc:
            logger.debug("WebSocket connection closed: %s", exc)
        finally:
            event_hub.unsubscribe(ws)

    # Store references for test access
    app.settings_store = settings
    app.backup_manager = backup_manager
    app.scheduler = scheduler
    app.event_hub = event_hub

    return app
