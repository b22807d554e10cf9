"""WSGI entrypoint used by Gunicorn."""
import os

from tourney_portal.app import create_app
from tourney_portal.config import _env_bool
from tourney_portal.services.catalog import seed_events

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

if _env_bool('AUTO_SEED_EVENTS', False):
    with app.app_context():
        seeded = seed_events()
        if seeded:
            print(f"Seeded {seeded} catalog events")
