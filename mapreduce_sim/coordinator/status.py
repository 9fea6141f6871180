"""
HTTP status endpoint for the coordinator.

GET /status    -> phase, per-kind task counts, recent events
GET /api/done  -> {"done": bool}, the HTTP form of the Done() RPC
"""

import threading
from datetime import datetime

from flask import Flask, jsonify
from werkzeug.serving import make_server

from mapreduce_sim.utils.logger import get_logger

logger = get_logger(__name__)


def create_status_app(coordinator):
    """Build the Flask app serving ``coordinator``'s ledger state."""
    app = Flask(__name__)

    @app.route('/status')
    @app.route('/api/status')
    def status():
        progress = coordinator.ledger.progress()
        return jsonify({
            'phase': progress['phase'],
            'done': progress['done'],
            'fatal_error': str(coordinator.fatal_error) if coordinator.fatal_error else None,
            'tasks': {
                'map': progress['map'],
                'reduce': progress['reduce']
            },
            'events': coordinator.ledger.recent_events(20),
            'last_update': datetime.now().isoformat()
        })

    @app.route('/api/done')
    def done():
        return jsonify({'done': coordinator.done()})

    return app


class StatusServer:
    """Runs the status app on a background thread."""

    def __init__(self, coordinator, host='127.0.0.1', port=8080):
        self._server = make_server(host, port, create_status_app(coordinator), threaded=True)
        self.port = self._server.server_port
        self._thread = threading.Thread(target=self._server.serve_forever,
                                        name="status-http", daemon=True)

    def start(self):
        self._thread.start()
        logger.info(f"HTTP status server started on port {self.port}")

    def stop(self):
        self._server.shutdown()
        self._thread.join(timeout=5)
