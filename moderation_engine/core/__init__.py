"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    init_db,
)
from .positions import AVAILABLE_POSITIONS, Position, Question, get_position
from .security import (
    Actor,
    StaffLevel,
    hash_content,
    verify_content_hash,
)
from .templates import (
    DEFAULT_TEMPLATES,
    MAX_DURATION_HOURS,
    PERMANENT_DURATION,
    RestrictionTemplate,
    TemplateCatalog,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "init_db",
    "close_db",
    # Security
    "Actor",
    "StaffLevel",
    "hash_content",
    "verify_content_hash",
    # Catalogs
    "RestrictionTemplate",
    "TemplateCatalog",
    "DEFAULT_TEMPLATES",
    "PERMANENT_DURATION",
    "MAX_DURATION_HOURS",
    "Position",
    "Question",
    "AVAILABLE_POSITIONS",
    "get_position",
]
