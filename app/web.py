from gunicorn.app.base import BaseApplication
from gunicorn.util import import_app

from app.core.config import Settings

WORKER_CLASS = "uvicorn.workers.UvicornWorker"


def gunicorn_options(settings: Settings) -> dict:
    """Gunicorn options for serving the verification API with uvicorn workers."""
    return {
        "bind": f"{settings.backend_host}:{settings.backend_port}",
        "workers": settings.workers_count,
        "worker_class": WORKER_CLASS,
        # verifyReceipt plus one redirect each way, then the status lookup
        "timeout": int(settings.legacy_receipt_timeout * 3 + settings.status_lookup_timeout) + 5,
    }


class GunicornApplication(BaseApplication):
    """Runs the ASGI app under Gunicorn, the options replace the command line."""

    def __init__(self, app_uri: str, options: dict | None = None):
        self.app_uri = app_uri
        self.options = options or {}
        super().__init__()

    def load_config(self):
        for key, value in self.options.items():
            if key in self.cfg.settings and value is not None:
                self.cfg.set(key.lower(), value)

    def load(self):
        return import_app(self.app_uri)
