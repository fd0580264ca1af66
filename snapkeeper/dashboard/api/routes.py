"""API route handlers for backup management.

    GET    /api/status                - Scheduler and backup folder status
    GET    /api/backups               - List snapshots, newest first
    POST   /api/backups               - Create a backup now
    DELETE /api/backups/<filename>    - Delete one snapshot
    POST   /api/backups/cleanup       - Apply the retention policy
    POST   /api/export                - Copy the live database elsewhere
    POST   /api/restore               - Restore the live database
    GET    /api/settings              - Backup settings
    PUT    /api/settings              - Update backup settings
"""

import logging
import os
from datetime import datetime

import psutil
from flask import Blueprint, jsonify, request

from snapkeeper.backup.backup_config import SETTING_BACKUP_ENABLED, SETTING_BACKUP_FOLDER
from snapkeeper.backup.backup_manager import BackupReason
from snapkeeper.dashboard.live_events import BackupEvent

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

# These are set by app.py at init time via init_routes()
_backup_manager = None
_scheduler = None
_settings = None
_event_hub = None


def init_routes(backup_manager, scheduler, settings, event_hub):
    """Wire up shared application state into the route handlers."""
    global _backup_manager, _scheduler, _settings, _event_hub
    _backup_manager = backup_manager
    _scheduler = scheduler
    _settings = settings
    _event_hub = event_hub


def _publish(event: BackupEvent, data: dict):
    if _event_hub:
        _event_hub.publish(event, data)


def _disk_free_bytes(path: str) -> int | None:
    """Free space on the volume holding ``path`` (or its nearest existing parent)."""
    path = os.path.abspath(path)
    while not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            return None
        path = parent
    try:
        return psutil.disk_usage(path).free
    except OSError:
        return None


# ------------------------------------------------------------------
# GET /api/status
# ------------------------------------------------------------------

@api.route("/status", methods=["GET"])
def get_status():
    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    try:
        folder = _backup_manager.get_backup_folder()
        settings = _settings.get_backup_settings()
    except Exception as exc:
        logger.exception("Settings error fetching status")
        return jsonify({"error": f"Settings error: {exc}"}), 500

    return jsonify({
        "status": "running",
        "timestamp": datetime.now().isoformat(),
        "scheduler_running": bool(_scheduler and _scheduler.is_running),
        "backup_enabled": settings.backup_enabled,
        "backup_folder": folder,
        "backup_count": len(_backup_manager.list_backups()),
        "last_backup_time": settings.last_backup_time,
        "disk_free_bytes": _disk_free_bytes(folder),
    })


# ------------------------------------------------------------------
# /api/backups
# ------------------------------------------------------------------

@api.route("/backups", methods=["GET"])
def get_backups():
    if not _backup_manager:
        return jsonify({"backups": [], "total": 0})

    backups = [b.to_dict() for b in _backup_manager.list_backups()]
    return jsonify({"backups": backups, "total": len(backups)})


@api.route("/backups", methods=["POST"])
def create_backup():
    """Create a backup. Body: {"reason": "manual" | "scheduled" | "pre-update"}."""
    data = request.get_json(silent=True) or {}

    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    try:
        reason = BackupReason(data.get("reason", BackupReason.MANUAL.value))
    except ValueError:
        return jsonify({"error": f"Invalid reason: {data.get('reason')}"}), 400

    result = _backup_manager.create_backup(reason)
    if result.success:
        _publish(BackupEvent.BACKUP_CREATED, result.to_dict())
    return jsonify(result.to_dict()), 200 if result.success else 500


@api.route("/backups/<path:filename>", methods=["DELETE"])
def delete_backup(filename):
    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    if not _backup_manager.delete_backup(filename):
        return jsonify({"deleted": False, "error": f"Could not delete {filename}"}), 400

    _publish(BackupEvent.BACKUP_DELETED, {"filename": filename})
    return jsonify({"deleted": True, "filename": filename})


@api.route("/backups/cleanup", methods=["POST"])
def cleanup_backups():
    """Apply retention. Body: {"max_to_keep": int} (optional)."""
    data = request.get_json(silent=True) or {}

    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    try:
        max_to_keep = int(data.get("max_to_keep", _backup_manager.max_backups))
    except (TypeError, ValueError):
        return jsonify({"error": "max_to_keep must be an integer"}), 400
    if max_to_keep < 0:
        return jsonify({"error": "max_to_keep must not be negative"}), 400

    _backup_manager.cleanup_old_backups(max_to_keep)
    remaining = len(_backup_manager.list_backups())
    return jsonify({"max_to_keep": max_to_keep, "remaining": remaining})


# ------------------------------------------------------------------
# POST /api/export
# ------------------------------------------------------------------

@api.route("/export", methods=["POST"])
def export_backup():
    data = request.get_json(silent=True) or {}

    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    destination = data.get("destination")
    if not destination:
        return jsonify({"error": "destination is required"}), 400

    result = _backup_manager.export_backup_to_path(destination)
    return jsonify(result.to_dict()), 200 if result.success else 500


# ------------------------------------------------------------------
# POST /api/restore
# ------------------------------------------------------------------

@api.route("/restore", methods=["POST"])
def restore_backup():
    """Restore the live database.

    Accepts either:
        {"path": str}       - any file on disk
        {"filename": str}   - a snapshot in the backup folder
    """
    data = request.get_json(silent=True) or {}

    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    if data.get("path"):
        result = _backup_manager.recovery.restore_backup(data["path"])
    elif data.get("filename"):
        result = _backup_manager.recovery.restore_snapshot(data["filename"])
    else:
        return jsonify({"error": "Provide path or filename"}), 400

    _publish(BackupEvent.RESTORE, result.to_dict())
    return jsonify(result.to_dict()), 200 if result.success else 500


# ------------------------------------------------------------------
# /api/settings
# ------------------------------------------------------------------

@api.route("/settings", methods=["GET"])
def get_settings():
    if not _settings:
        return jsonify({"error": "Settings not available"}), 503
    return jsonify(_settings.get_backup_settings().to_dict())


@api.route("/settings", methods=["PUT"])
def update_settings():
    """Update backup_enabled and/or backup_folder, then reschedule."""
    data = request.get_json(silent=True) or {}
    if not data:
        return jsonify({"error": "No data provided"}), 400

    if not _settings:
        return jsonify({"error": "Settings not available"}), 503

    updates = {}
    if "backup_enabled" in data:
        enabled = data["backup_enabled"]
        if isinstance(enabled, str):
            enabled = enabled.lower() == "true"
        updates[SETTING_BACKUP_ENABLED] = "true" if enabled else "false"

    if "backup_folder" in data:
        folder = data["backup_folder"] or None
        if folder is not None and (not isinstance(folder, str) or not os.path.isabs(folder)):
            return jsonify({"error": "backup_folder must be an absolute path"}), 400
        updates[SETTING_BACKUP_FOLDER] = folder

    if not updates:
        return jsonify({"error": "Nothing to update"}), 400

    try:
        for key, value in updates.items():
            _settings.set(key, value)
    except Exception as exc:
        logger.exception("Failed to save settings")
        return jsonify({"error": f"Failed to save: {exc}"}), 500

    if _scheduler:
        _scheduler.restart()

    settings = _settings.get_backup_settings().to_dict()
    _publish(BackupEvent.SETTINGS_UPDATED, settings)
    return jsonify(settings)
