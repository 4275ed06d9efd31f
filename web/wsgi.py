"""WSGI entrypoint used by Gunicorn.

Run a single worker process so the proxy write lock and the in-memory
sessions are shared by every request:
`gunicorn -w 1 --threads 4 -b 0.0.0.0:8080 wsgi:app`
"""

import logging
import os
import sys

from app import create_app
from services.logutil import configure_logging
from services.settings import SettingsError, load_settings


configure_logging(os.environ.get("LOG_LEVEL") or "INFO")

try:
    _settings = load_settings()
except SettingsError as e:
    logging.getLogger(__name__).error("%s. Copy config.example.json to config.json and configure it.", e)
    sys.exit(1)

app = create_app(_settings)

# Common WSGI convention for other servers/tools.
application = app
