#!/usr/bin/env python3
"""
Read-only HTTP view of a running scheduler.

Handlers only read TileScheduler.last_snapshot, which the ticking thread
replaces wholesale after every tick, so they never touch the live
bookkeeping.
"""

import threading

from flask import Flask, jsonify

from tilestream import tsconfig
from tilestream.tsstats import snapshot, update_process_memory_stat

import logging
log = logging.getLogger(__name__)


def create_app(scheduler):
    app = Flask(__name__)

    @app.route("/stats")
    def stats():
        update_process_memory_stat()
        return jsonify({
            "stats": snapshot(),
            "scheduler": scheduler.last_snapshot,
        })

    @app.route("/queues")
    def queues():
        return jsonify(scheduler.last_snapshot.get("sources", {}))

    @app.route("/tiles")
    def tiles():
        return jsonify(scheduler.last_snapshot.get("tiles_in_view", {}))

    return app


def run(scheduler, port=None):
    """Serve the status app on a daemon thread. Returns the thread."""
    if port is None:
        port = int(tsconfig.CFG.status.port)
    app = create_app(scheduler)

    def _serve():
        log.info(f"Start status web on port {port}...")
        try:
            app.run(host='0.0.0.0', port=port, debug=False, threaded=True, use_reloader=False)
        except Exception as e:
            log.error(f"Status web error: {e}")
        log.info("Exiting status web ...")

    t = threading.Thread(target=_serve, daemon=True, name="StatusWeb")
    t.start()
    return t
