"""
Flask Backend API for Adaptive Difficulty Testing
Provides REST endpoints to drive the adaptive difficulty manager from a front-end
or a test harness, one controller per user.
"""

from flask import Flask, request, jsonify
from flask_cors import CORS
import logging
import sys
import os
from threading import Lock

# Add parent directory to path to import the controller modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ADM_Algo import AdaptiveDifficultyManager
from ADM_Bases.KPI import RoundOutcome
from ADM_Persistence import StateStore, encode_state
from adm_config import DEFAULT_CONFIG, ADMConfig

logger = logging.getLogger(__name__)


def create_app(config: ADMConfig = DEFAULT_CONFIG, store: StateStore | None = None) -> Flask:
    app = Flask(__name__)
    CORS(app)  # Enable CORS for front-end requests

    state_store = store if store is not None else StateStore.from_config(config)
    managers: dict[str, AdaptiveDifficultyManager] = {}
    managers_lock = Lock()

    def get_manager(user_id: str, initial_arousal: float | None = None) -> AdaptiveDifficultyManager:
        with managers_lock:
            manager = managers.get(user_id)
            if manager is None:
                manager = AdaptiveDifficultyManager(
                    config=config,
                    initial_arousal=initial_arousal,
                    user_id=user_id,
                    store=state_store,
                )
                managers[user_id] = manager
                logger.info({"event": "adm_manager_created", "user_id": user_id})
            return manager

    def request_payload() -> dict:
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise TypeError("request body must be a JSON object")
        return data

    def user_id_from(data: dict) -> str:
        user_id = data.get('user_id') or request.args.get('user_id') or 'user'
        return str(user_id)

    def error_response(exc: Exception):
        logger.warning({"event": "adm_request_rejected", "path": request.path, "error": str(exc)})
        return jsonify({
            "success": False,
            "error": str(exc)
        }), 400

    @app.route('/api/health', methods=['GET'])
    def health():
        """Health check endpoint"""
        return jsonify({"status": "ok", "message": "Adaptive difficulty API is running"})

    @app.route('/api/adm/round', methods=['POST'])
    def record_round():
        """
        Feed one completed round to the user's controller.

        Expected JSON payload:
        {
            "user_id": str,
            "arousal": float (optional, applied before the round is scored),
            "outcome": {
                "task_success": bool,
                "find_ratio": float,
                "reaction_time": float,
                "response_duration": float,
                "tap_error": float,
                "target_count": int
            },
            "save": bool (optional)
        }
        """
        try:
            data = request_payload()
            manager = get_manager(user_id_from(data), data.get('arousal'))
            if data.get('arousal') is not None:
                manager.update_arousal(float(data['arousal']))

            outcome = RoundOutcome.from_dict(data.get('outcome', {}))
            diagnostics = manager.record_round(outcome)
            saved = manager.save_state() if data.get('save') else False

            return jsonify({
                "success": True,
                "result": {**diagnostics.as_dict(), "saved": saved}
            })

        except (TypeError, ValueError) as e:
            return error_response(e)

    @app.route('/api/adm/arousal', methods=['POST'])
    def update_arousal():
        """
        Expected JSON payload:
        {
            "user_id": str,
            "arousal": float
        }
        """
        try:
            data = request_payload()
            if 'arousal' not in data:
                raise ValueError("arousal is required")
            arousal = float(data['arousal'])
            manager = get_manager(user_id_from(data), arousal)
            manager.update_arousal(arousal)

            return jsonify({
                "success": True,
                "result": {
                    "arousal": manager.arousal_level,
                    "absolute_values": manager.absolute_values.to_json()
                }
            })

        except (TypeError, ValueError) as e:
            return error_response(e)

    @app.route('/api/adm/state', methods=['GET'])
    def get_state():
        """Current state of the user's controller in its persisted JSON shape."""
        manager = get_manager(user_id_from({}))
        state = encode_state(manager.export_state())
        return jsonify({
            "success": True,
            "result": {
                **state,
                "arousal": manager.arousal_level,
                "absoluteValues": manager.absolute_values.to_json()
            }
        })

    @app.route('/api/adm/metrics', methods=['GET'])
    def get_metrics():
        manager = get_manager(user_id_from({}))
        metrics = manager.get_performance_metrics()
        return jsonify({
            "success": True,
            "result": {
                "average": metrics.average,
                "trend": metrics.trend,
                "variance": metrics.variance,
                "history_size": len(manager.history)
            }
        })

    @app.route('/api/adm/save', methods=['POST'])
    def save_state():
        try:
            data = request_payload()
            manager = get_manager(user_id_from(data))
            saved = manager.save_state()

            return jsonify({
                "success": saved,
                "result": {"saved": saved, "path": str(state_store.path_for(user_id_from(data)))}
            })

        except (TypeError, ValueError) as e:
            return error_response(e)

    @app.route('/api/adm/reset', methods=['POST'])
    def reset_state():
        """
        Reset the user's controller to defaults.

        Expected JSON payload:
        {
            "user_id": str,
            "clear_saved": bool (optional, also delete the stored record)
        }
        """
        try:
            data = request_payload()
            user_id = user_id_from(data)
            manager = get_manager(user_id)
            manager.reset()
            cleared = state_store.clear(user_id) if data.get('clear_saved') else False

            return jsonify({
                "success": True,
                "result": {"reset": True, "cleared": cleared}
            })

        except (TypeError, ValueError) as e:
            return error_response(e)

    return app


app = create_app()


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    print("Starting Adaptive Difficulty API on http://localhost:5000")
    print("API Endpoints:")
    print("  GET  /api/health")
    print("  POST /api/adm/round")
    print("  POST /api/adm/arousal")
    print("  GET  /api/adm/state")
    print("  GET  /api/adm/metrics")
    print("  POST /api/adm/save")
    print("  POST /api/adm/reset")
    app.run(debug=True, port=5000)
