# backend/wsgi.py
from checkout_tracker import create_app

app = create_app()
