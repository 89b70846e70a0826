from __future__ import annotations

import logging
import threading
from typing import Callable

from flask import Flask, jsonify

from laser_dispatch.config.pipelines import PIPELINES
from laser_dispatch.workflows.run_pipeline import run_configured

logger = logging.getLogger(__name__)


def _run_in_background(runner: Callable[[str], object], name: str) -> threading.Thread:
    def target():
        try:
            summary = runner(name)
            logger.info("Triggered run finished: %s", summary)
        except Exception:
            # nobody is waiting on this thread; the log is the only channel
            logger.exception("Triggered run of %s failed", name)

    t = threading.Thread(target=target, name=f"run-{name}", daemon=True)
    t.start()
    return t


def create_app(
    runner: Callable[[str], object] = run_configured,
    pipelines: tuple[str, ...] = PIPELINES,
) -> Flask:
    """Manual trigger: start a pipeline run and answer before it finishes."""

    app = Flask(__name__)

    @app.route("/health")
    def health():
        return {"status": "healthy", "service": "laser-dispatch"}

    @app.route("/trigger", methods=["GET", "POST"])
    def trigger_all():
        for name in pipelines:
            _run_in_background(runner, name)
        return jsonify({"status": "started", "pipelines": list(pipelines)}), 202

    @app.route("/trigger/<pipeline>", methods=["GET", "POST"])
    def trigger(pipeline: str):
        if pipeline not in pipelines:
            return jsonify({"error": f"unknown pipeline {pipeline}"}), 404
        _run_in_background(runner, pipeline)
        return jsonify({"status": "started", "pipelines": [pipeline]}), 202

    return app
