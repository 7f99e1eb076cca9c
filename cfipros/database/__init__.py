from flask_sqlalchemy import SQLAlchemy

# global SQLAlchemy() instance, bound by the app factory
db = SQLAlchemy()

__all__ = ["db"]
