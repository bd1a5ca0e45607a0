# backend/wsgi.py
from mesapos import create_app

app = create_app()
