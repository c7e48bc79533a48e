"""HTTP API for the canvas backend."""

from blockflow.web.server import create_app, run_server

__all__ = ["create_app", "run_server"]
