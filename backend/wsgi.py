# backend/wsgi.py
from fleetops import create_app

app = create_app()
