# Copyright (c) 2025 sprowii
import redis
from flask import Flask, jsonify

from emperor import config
from emperor.logging_config import log
from emperor.moderation.storage import get_store

flask_app = Flask(__name__)


@flask_app.route("/")
def home():
    return "👑 Emperor bot is running..."


@flask_app.route("/healthz")
def healthz():
    try:
        get_store().client.ping()
    except redis.RedisError as exc:
        log.error(f"Redis недоступен: {exc}")
        return jsonify({"status": "degraded", "redis": False}), 503
    return jsonify({"status": "ok", "redis": True})


def run_flask() -> None:
    flask_app.run(host=config.FLASK_HOST, port=config.FLASK_PORT, use_reloader=False)
