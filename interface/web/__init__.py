"""Web 管理接口（FastAPI）。"""
from interface.web.api import create_app

__all__ = ["create_app"]
