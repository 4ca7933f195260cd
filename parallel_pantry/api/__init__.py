from .server import build_app, run_api

__all__ = ["build_app", "run_api"]
