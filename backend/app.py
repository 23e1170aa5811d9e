"""
FLASK APP ENTRY POINT - COMPANION DEVICE BACKEND
==================================================

Sets up the Flask app, enables CORS and registers the device blueprint.

MAIN FEATURES
- App factory create_app() (tests pass their own config / service)
- CORS enabled for a separately served frontend
- Index listing the API endpoints
"""
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS

from core.device import DeviceService
from database.db_manager import DATABASE_FILE, DeviceConfigStore

logger = logging.getLogger(__name__)


def create_app(config: dict = None, service: DeviceService = None) -> Flask:
    app = Flask(__name__)
    app.config["DEVICE_DB"] = os.getenv("OTP_DEVICE_DB", DATABASE_FILE)
    if config:
        app.config.update(config)

    if not app.debug and not logging.getLogger().handlers:
        logging.basicConfig(
            level=os.getenv("OTP_LOG_LEVEL", "INFO").upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    # Let a frontend on another origin/port call the API
    CORS(app)

    if service is None:
        service = DeviceService(store=DeviceConfigStore(app.config["DEVICE_DB"]))
    app.extensions["device_service"] = service

    from backend.routes import device_bp
    app.register_blueprint(device_bp)

    @app.route("/", methods=["GET"])
    def index():
        """API overview at http://localhost:5000"""
        return jsonify({
            "service": "totp-companion",
            "endpoints": {
                "POST /api/sanitize": "clean partial key input",
                "POST /api/device": "pair with a 16-character key",
                "GET /api/device": "pairing status",
                "DELETE /api/device": "reset pairing",
                "GET /api/otp": "current code and seconds remaining",
                "GET /api/otp/stream": "live code stream (SSE)",
            },
        })

    logger.debug("App created with device db %s", app.config["DEVICE_DB"])
    return app


if __name__ == '__main__':
    # Development server:
    # - debug=True reloads on code changes
    # - host='0.0.0.0' listens on every interface
    create_app().run(debug=True, host='0.0.0.0', port=5000, threaded=True)
