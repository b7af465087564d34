from .base import Base
from .session import create_engine_and_session_factory, init_schema

__all__ = [
    "Base",
    "create_engine_and_session_factory",
    "init_schema",
]
