"""Shared Flask extensions for the booking engine."""
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy database instance; owns the engine and the model registry.
db = SQLAlchemy()
