"""
DEVICE API ROUTES - FLASK BLUEPRINT

HTTP face of the companion device, for a browser or kiosk UI. Every handler
only calls the core facade (core.device.DeviceService).

EXAMPLES:
curl -X POST http://localhost:5000/api/device -H "Content-Type: application/json" -d '{"key": "AB12CD34EF56GH78"}'
curl http://localhost:5000/api/otp
curl -N http://localhost:5000/api/otp/stream
curl -X DELETE http://localhost:5000/api/device
"""

import json
import logging
import queue

from flask import Blueprint, Response, current_app, jsonify, request

from core.device import DeviceService
from core.key_validator import KEY_LENGTH, ValidationError, sanitize
from database.db_manager import StorageError

logger = logging.getLogger(__name__)

device_bp = Blueprint("device", __name__, url_prefix="/api")

# Seconds between keep-alive comments on an idle event stream
STREAM_KEEPALIVE = 15.0


def get_device_service() -> DeviceService:
    return current_app.extensions["device_service"]


@device_bp.errorhandler(ValidationError)
def handle_validation_error(e: ValidationError):
    return jsonify({"error": e.reason, "type": type(e).__name__}), 400


@device_bp.errorhandler(StorageError)
def handle_storage_error(e: StorageError):
    logger.error("Storage failure: %s", e)
    return jsonify({"error": "Device storage unavailable. Please try again."}), 500


@device_bp.route("/sanitize", methods=["POST"])
def sanitize_key():
    """
    LIVE INPUT CLEANING

    Body: {"key": "ab12-cd34"}  ->  {"key": "AB12CD34", "complete": false}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    raw = data.get("key") or ""
    if not isinstance(raw, str):
        return jsonify({"error": "Key must be a string"}), 400

    key = sanitize(raw)
    return jsonify({"key": key, "complete": len(key) == KEY_LENGTH})


@device_bp.route("/device", methods=["POST"])
def pair():
    """
    PAIR THIS DEVICE

    Body: {"key": "AB12CD34EF56GH78"}
    201 -> {"secret": ..., "createdAt": ...}
    400 -> {"error": "Key must be exactly 16 characters.", "type": "LengthError"}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    key = data.get("key")
    if not isinstance(key, str):
        return jsonify({"error": "Key is required"}), 400

    config = get_device_service().pair_device(key)
    return jsonify(config.to_dict()), 201


@device_bp.route("/device", methods=["GET"])
def device_status():
    config = get_device_service().load_device()
    if config is None:
        return jsonify({"error": "No device paired", "paired": False}), 404
    return jsonify({"paired": True, **config.to_dict()})


@device_bp.route("/device", methods=["DELETE"])
def reset():
    """RESET DEVICE - safe to call when nothing is paired."""
    get_device_service().reset_device()
    return jsonify({"message": "Device reset", "paired": False})


@device_bp.route("/otp", methods=["GET"])
def current_code():
    """
    CURRENT CODE

    200 -> {"code": "123456", "remaining": 17, "timeStep": 57000000, "refreshed": false}
    404 when no device is paired.
    """
    service = get_device_service()
    config = service.load_device()
    if config is None:
        return jsonify({"error": "No device paired"}), 404
    return jsonify(service.current_otp(config.secret).to_dict())


@device_bp.route("/otp/stream", methods=["GET"])
def code_stream():
    """
    LIVE CODE STREAM (Server-Sent Events)

    One `data:` event per tick while the device stays paired; the stream
    ends when the device is reset.
    """
    service = get_device_service()
    config = service.load_device()
    if config is None:
        return jsonify({"error": "No device paired"}), 404

    subscription = service.observe_otp(config.secret)
    keepalive = current_app.config.get("STREAM_KEEPALIVE", STREAM_KEEPALIVE)

    def events():
        try:
            while True:
                try:
                    tick = subscription.get(timeout=keepalive)
                except queue.Empty:
                    yield ": keepalive\n\n"
                    continue
                if tick is None:
                    yield "event: end\ndata: {}\n\n"
                    return
                yield f"data: {json.dumps(tick.to_dict())}\n\n"
        finally:
            subscription.close()

    return Response(
        events(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
