# -*- coding: utf-8 -*-
"""Global Flask-SQLAlchemy instance shared by every model."""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
