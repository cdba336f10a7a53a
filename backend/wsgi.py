# backend/wsgi.py
from vetcaja import create_app

app = create_app()
