# -*- coding: utf-8 -*-
"""WSGI entry point: ``gunicorn src.main:app``."""
from src.factory import create_app

app = create_app()
