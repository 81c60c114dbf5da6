# backend/wsgi.py
from matcycle import create_app

app = create_app()
