import logging
import os
import signal
import sys
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from flask import Flask, current_app, jsonify, request, session
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from services.auth_store import AuthStore
from services.errors import (
    AuthError,
    ConsoleError,
    RateLimitError,
    ServiceControlError,
    clean_text,
    public_error_message,
)
from services.frpc_config import FrpcConfigStore
from services.housekeeping import start_housekeeping
from services.logutil import configure_logging
from services.proxy_registry import ProxyRegistry
from services.rate_limit import SlidingWindowLimiter
from services.servicectl import ServiceController
from services.session_store import SESSION_LIFETIME_SECONDS, SessionRecord, SessionStore
from services.settings import Settings, SettingsError, load_settings


logger = logging.getLogger(__name__)


LOGIN_MAX_ATTEMPTS = 5
LOGIN_WINDOW_SECONDS = 15 * 60

# Reachable without a session.
PUBLIC_ENDPOINTS = ("static", "index", "health", "api_login", "api_auth_status")


@dataclass
class Console:
    settings: Settings
    auth: AuthStore
    registry: ProxyRegistry
    controller: ServiceController
    sessions: SessionStore
    login_limiter: SlidingWindowLimiter


def _env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in ("1", "true", "yes", "on")


def get_console(app: Optional[Flask] = None) -> Console:
    return (app or current_app).extensions["frpc_console"]


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    # Plain form posts are accepted too.
    return request.form.to_dict() if request.form else {}


def _current_session(console: Console) -> Optional[SessionRecord]:
    return console.sessions.get(session.get("sid"))


def create_app(settings: Settings, *, console: Optional[Console] = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = settings.session_secret

    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024
    # Keep proxies in frpc.toml order.
    app.json.sort_keys = False  # type: ignore[attr-defined]
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(seconds=SESSION_LIFETIME_SECONDS)
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = bool(settings.secure_cookie or _env_flag("SESSION_COOKIE_SECURE"))

    if settings.trust_proxy:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)  # type: ignore[method-assign]

    if console is None:
        store = FrpcConfigStore(
            settings.frpc_config_path,
            enable_backups=settings.enable_backups,
            backup_dir=settings.backup_dir,
        )
        console = Console(
            settings=settings,
            auth=AuthStore(settings.username, settings.password_hash),
            registry=ProxyRegistry(store),
            controller=ServiceController(
                settings.service_name,
                use_sudo=settings.use_sudo,
                timeout=settings.service_command_timeout,
            ),
            sessions=SessionStore(),
            login_limiter=SlidingWindowLimiter(
                max_attempts=LOGIN_MAX_ATTEMPTS,
                window_seconds=LOGIN_WINDOW_SECONDS,
            ),
        )
    app.extensions["frpc_console"] = console

    if not _env_flag("DISABLE_BACKGROUND"):
        start_housekeeping([console.sessions.sweep, console.login_limiter.sweep])

    @app.before_request
    def _require_login_guard():
        if request.endpoint in PUBLIC_ENDPOINTS:
            return None
        if _current_session(console) is not None:
            return None
        return jsonify({"error": "Authentication required"}), 401

    @app.after_request
    def _security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        resp.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if (resp.mimetype or "").lower().startswith("text/html"):
            resp.headers.setdefault(
                "Content-Security-Policy",
                "default-src 'self'; style-src 'self'; script-src 'self'; connect-src 'self'; object-src 'none'; base-uri 'self'; frame-ancestors 'self'",
            )
        if request.path.startswith("/api/"):
            resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    @app.errorhandler(ConsoleError)
    def _console_error(e: ConsoleError):
        if e.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e.message)
        resp = jsonify({"error": public_error_message(e)})
        if isinstance(e, RateLimitError) and e.retry_after:
            resp.headers["Retry-After"] = str(e.retry_after)
        return resp, e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        if request.path.startswith("/api/"):
            return jsonify({"error": e.description}), e.code
        return e

    @app.errorhandler(Exception)
    def _unexpected_error(e: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": public_error_message(e)}), 500

    @app.route("/")
    def index():
        return app.send_static_file("index.html")

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"ok": True}), 200

    @app.route("/api/login", methods=["POST"])
    def api_login():
        client = request.remote_addr or "unknown"
        if not console.login_limiter.hit(client):
            logger.warning("Login rate limit hit for %s", client)
            raise RateLimitError(
                "Too many login attempts, please try again later.",
                retry_after=console.login_limiter.retry_after(client),
            )

        data = _json_body()
        username = data.get("username") or ""
        password = data.get("password") or ""
        if not console.auth.verify_user(username, password):
            logger.warning("Failed login for %r from %s", clean_text(str(username), max_len=64), client)
            raise AuthError("Invalid credentials")

        console.sessions.destroy(session.get("sid"))
        record = console.sessions.create(console.settings.username)
        session.clear()
        session.permanent = True
        session["sid"] = record.session_id
        logger.info("User %s logged in from %s", record.username, client)
        return jsonify({"success": True})

    @app.route("/api/logout", methods=["POST"])
    def api_logout():
        try:
            console.sessions.destroy(session.get("sid"))
            session.clear()
        except Exception:
            logger.exception("Error destroying session")
            return jsonify({"error": "Logout failed"}), 500
        return jsonify({"success": True})

    @app.route("/api/auth/status", methods=["GET"])
    def api_auth_status():
        return jsonify({"authenticated": _current_session(console) is not None})

    @app.route("/api/proxies", methods=["GET"])
    def api_list_proxies():
        return jsonify({"proxies": console.registry.list_proxies()})

    @app.route("/api/proxies/<name>", methods=["GET"])
    def api_get_proxy(name: str):
        return jsonify({"proxy": console.registry.get_proxy(name)})

    @app.route("/api/proxies", methods=["POST"])
    def api_create_proxy():
        data = _json_body()
        console.registry.create_proxy(data.get("name"), data.get("proxyConfig"))
        return jsonify({"success": True, "message": "Proxy created successfully"})

    @app.route("/api/proxies/<name>", methods=["PUT"])
    def api_update_proxy(name: str):
        data = _json_body()
        console.registry.update_proxy(name, data.get("proxyConfig"))
        return jsonify({"success": True, "message": "Proxy updated successfully"})

    @app.route("/api/proxies/<name>", methods=["DELETE"])
    def api_delete_proxy(name: str):
        console.registry.delete_proxy(name)
        return jsonify({"success": True, "message": "Proxy deleted successfully"})

    @app.route("/api/restart", methods=["POST"])
    def api_restart():
        ok, detail = console.controller.restart()
        if not ok:
            raise ServiceControlError(f"Failed to restart service: {clean_text(detail)}")
        return jsonify({"success": True, "message": "FRPC service restarted successfully"})

    @app.route("/api/status", methods=["GET"])
    def api_status():
        return jsonify({"active": console.controller.status(), "service": console.controller.service_name})

    return app


def main() -> int:
    configure_logging(os.environ.get("LOG_LEVEL") or "INFO")
    try:
        settings = load_settings()
    except SettingsError as e:
        logger.error("%s. Copy config.example.json to config.json and configure it.", e)
        return 1

    app = create_app(settings)

    def _shutdown(signum, _frame):
        logger.info("%s received, shutting down", signal.Signals(signum).name)
        sys.exit(0)

    signal.signal(signal.SIGTERM, _shutdown)

    logger.info("FRPC web console listening on port %d", settings.port)
    logger.info("Configuration file: %s", settings.frpc_config_path)
    app.run(host="0.0.0.0", port=settings.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
