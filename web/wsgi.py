"""WSGI entrypoint used by Gunicorn.

Run: `gunicorn -b 0.0.0.0:1412 --threads 8 wsgi:app`
"""

from app import create_app
from services.config import load_settings
from services.logutil import configure_logging

configure_logging()
_settings = load_settings()
configure_logging(_settings.log_level)

app = create_app(_settings)

# Common WSGI convention for other servers/tools.
application = app
