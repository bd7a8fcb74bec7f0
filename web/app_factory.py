"""Flask application factory."""
from __future__ import annotations

from typing import Callable

from flask import Flask, jsonify, request
from werkzeug.exceptions import RequestEntityTooLarge


def _register_error_handlers(flask_app: Flask) -> None:
    @flask_app.errorhandler(RequestEntityTooLarge)
    def handle_body_too_large(e):
        flask_app.logger.warning("Request body too large for path %s", request.path)
        return jsonify({'error': 'request body too large'}), 413

    @flask_app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({'error': 'not found'}), 404

    @flask_app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({'error': 'method not allowed'}), 405


def create_app(
    flask_app: Flask,
    *,
    configure_blueprints: Callable[[Flask], None],
) -> Flask:
    """Return ``flask_app`` with blueprints and JSON error handlers installed."""

    configure_blueprints(flask_app)
    _register_error_handlers(flask_app)
    return flask_app
