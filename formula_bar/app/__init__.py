from __future__ import annotations

from flask import Flask


def create_app(config_path: str | None = None) -> Flask:
    """Application factory used by tests and runtime."""
    from .config import load_config
    from .database import init_db
    from .api import register_api

    config = load_config(config_path)
    app = Flask(__name__, static_folder=None)
    app.config.update(config)

    init_db(app)
    register_api(app)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
