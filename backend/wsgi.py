# backend/wsgi.py
from pos_ingest import create_app

app = create_app()
