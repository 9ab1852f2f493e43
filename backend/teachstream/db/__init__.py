"""Database package for teachstream."""

from .base import (
    Base,
    close_all,
    drop_databases,
    get_tutor_session,
    get_tutor_session_maker,
    init_databases,
)

__all__ = [
    "Base",
    "close_all",
    "drop_databases",
    "get_tutor_session",
    "get_tutor_session_maker",
    "init_databases",
]
