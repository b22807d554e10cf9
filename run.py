#!/usr/bin/env python3
"""Entry point for the tournament portal API."""
import os
from tourney_portal.app import create_app

config_name = os.environ.get('FLASK_ENV', 'development')
app = create_app(config_name)

# Seed the event catalog on first run
with app.app_context():
    from tourney_portal.services.catalog import seed_events
    count = seed_events()
    if count:
        print(f"Seeded {count} catalog events")

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5001))
    print(f"Tournament portal starting on http://localhost:{port}")
    app.run(host='0.0.0.0', port=port, debug=(config_name == 'development'))
