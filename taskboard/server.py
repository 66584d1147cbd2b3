#!/usr/bin/env python3
"""
Task Board Server
-----------------
JSON API over a per-identity board session.

Usage:
    taskboard-server --config taskboard.yaml
    taskboard-server --db /tmp/taskboard.db --port 3000

Headers:
    X-User-Id      signed-in identity (required)
    Authorization  Bearer token forwarded to the rest backend
    X-API-Key      required on mutating routes when api_secret is set

API:
    GET    /api/board                → { identity, columns, stats }
    POST   /api/board/refresh        → { identity, columns, stats }
    POST   /api/drag                 → { outcome, columns }
    POST   /api/tasks                → { task }            (201)
    DELETE /api/tasks/<id>           → { deleted }
    POST   /api/tasks/<id>/expand    → { id, expanded }
    GET    /api/users                → { users }
    GET    /api/notices              → { notices }
    GET    /health
"""

import asyncio
import hmac
import logging
import threading
from functools import wraps
from typing import Optional

from flask import Flask, g, jsonify, request

from .config import Config, configure_logging
from .engine import OutcomeStatus
from .errors import BoardError
from .gateway import open_gateway
from .schema import TaskDraft
from .session import SessionRegistry

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "validation_failed": 400,
    "not_found": 404,
    "store_unavailable": 503,
}


# ── Event loop ───────────────────────────────────────────────────────────────

class LoopRunner:
    """One background event loop; request threads submit coroutines to it."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self.loop.run_forever, name="taskboard-loop", daemon=True)
        self._thread.start()

    def run(self, coro, timeout: Optional[float] = None):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


# ── App ──────────────────────────────────────────────────────────────────────

def create_app(config: Optional[Config] = None, registry: Optional[SessionRegistry] = None) -> Flask:
    config = config or Config.load()
    if registry is None:
        registry = SessionRegistry(
            lambda identity, token: open_gateway(config, identity, token),
            timeout=config.request_timeout,
            resync_on_success=config.resync_on_success,
            notice_limit=config.notice_limit,
        )
    runner = LoopRunner()

    app = Flask(__name__)
    app.config["TASKBOARD"] = config
    app.extensions["taskboard"] = {"registry": registry, "runner": runner}

    def require_api_key(f):
        """Decorator: reject requests without a valid X-API-Key header when a secret is set."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if config.api_secret:
                provided = request.headers.get("X-API-Key", "").strip()
                if not hmac.compare_digest(provided, config.api_secret):
                    code = 401 if not provided else 403
                    return jsonify({"error": "Unauthorized"}), code
            return f(*args, **kwargs)
        return decorated

    def with_session(f):
        """Decorator: resolve the identity's session, loading the board on first use."""
        @wraps(f)
        def decorated(*args, **kwargs):
            identity = request.headers.get("X-User-Id", "").strip()
            if not identity:
                return jsonify({"error": "X-User-Id header is required"}), 401
            auth = request.headers.get("Authorization", "")
            token = auth[7:].strip() if auth.lower().startswith("bearer ") else None
            try:
                session = registry.get(identity, token)
            except ValueError as e:
                return jsonify({"error": str(e)}), 500
            if not session.loaded and not runner.run(session.refresh()):
                return jsonify({"error": "Could not load tasks", "notices": _notices(session)}), 503
            g.session = session
            return f(*args, **kwargs)
        return decorated

    def _notices(session, limit: int = 5):
        return [n.to_dict() for n in session.bridge.recent_notices(limit)]

    # ── Routes ───────────────────────────────────────────────────────────────

    @app.route("/api/board")
    @with_session
    def api_board():
        return jsonify(g.session.to_dict())

    @app.route("/api/board/refresh", methods=["POST"])
    @with_session
    def api_refresh():
        if not runner.run(g.session.refresh()):
            return jsonify({"error": "Could not load tasks", **g.session.to_dict()}), 503
        return jsonify(g.session.to_dict())

    @app.route("/api/drag", methods=["POST"])
    @require_api_key
    @with_session
    def api_drag():
        data = request.get_json(force=True, silent=True)
        if data is None:
            data = {}
        outcome = runner.run(g.session.handle_drag_complete(data))
        body = {"outcome": outcome.to_dict(), **g.session.to_dict()}
        if outcome.status is OutcomeStatus.REJECTED:
            return jsonify(body), 400
        if outcome.status is OutcomeStatus.FAILED:
            return jsonify(body), 409
        return jsonify(body)

    @app.route("/api/tasks", methods=["POST"])
    @require_api_key
    @with_session
    def api_create_task():
        data = request.get_json(force=True, silent=True) or {}
        if not isinstance(data, dict):
            return jsonify({"error": "Task body must be an object", "kind": "validation_failed"}), 400
        task = runner.run(g.session.forms.submit(TaskDraft.from_dict(data)))
        if task is None:
            error = g.session.forms.error
            return jsonify({
                "error": str(error),
                "kind": error.kind,
                "draft": g.session.forms.draft.to_dict(),
            }), ERROR_STATUS.get(error.kind, 500)
        return jsonify({"task": task.to_dict(), "id": task.task_id}), 201

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @require_api_key
    @with_session
    def api_delete_task(task_id):
        if task_id not in g.session.board:
            return jsonify({"error": "Task not found"}), 404
        if runner.run(g.session.delete_task(task_id)):
            return jsonify({"deleted": task_id})
        notice = g.session.bridge.recent_notices(1)
        kind = notice[0].kind if notice else "store_unavailable"
        return jsonify({"error": notice[0].message if notice else "Delete failed", "kind": kind}), \
            ERROR_STATUS.get(kind, 500)

    @app.route("/api/tasks/<task_id>/expand", methods=["POST"])
    @with_session
    def api_expand_task(task_id):
        try:
            expanded = g.session.toggle_expansion(task_id)
        except BoardError as e:
            return jsonify({"error": str(e)}), ERROR_STATUS.get(e.kind, 500)
        return jsonify({"id": task_id, "expanded": expanded})

    @app.route("/api/users")
    @with_session
    def api_users():
        try:
            users = runner.run(g.session.forms.assignable_users())
        except BoardError as e:
            return jsonify({"error": str(e)}), ERROR_STATUS.get(e.kind, 500)
        return jsonify({"users": [u.to_dict() for u in users]})

    @app.route("/api/notices")
    @with_session
    def api_notices():
        limit = request.args.get("limit", type=int)
        return jsonify({"notices": [n.to_dict() for n in g.session.bridge.recent_notices(limit)]})

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "backend": config.backend, "sessions": len(registry)})

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="Task Board Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--config", help="Path to taskboard.yaml")
    parser.add_argument("--db", help="Path to the SQLite database (overrides TASKBOARD_DB)")
    args = parser.parse_args(argv)

    config = Config.load(args.config)
    if args.db:
        config.db_path = args.db
        config.resolve_paths()
    configure_logging(config.log_level)

    logger.info(f"Task board on http://{args.host}:{args.port} (backend={config.backend})")
    app = create_app(config)
    app.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
