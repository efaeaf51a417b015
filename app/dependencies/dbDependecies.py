"""Request-scoped dependencies shared by the routers"""
from app.database.database import get_db

__all__ = ["get_db"]
