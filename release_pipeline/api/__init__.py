"""API module exports"""
from .endpoints import router, get_pipeline, register_exception_handlers

__all__ = ["router", "get_pipeline", "register_exception_handlers"]
