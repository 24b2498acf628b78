"""Database infrastructure: engine and session factories."""

from reliable_delivery.infra.database.session import (
    check_connection,
    create_engine_from_settings,
    create_session_factory,
    create_tables,
    drop_tables,
    session_scope,
)

__all__ = [
    "check_connection",
    "create_engine_from_settings",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "session_scope",
]
