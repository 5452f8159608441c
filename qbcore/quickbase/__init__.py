"""QuickBase REST API access"""
from qbcore.quickbase.errors import (
    ConfigError,
    QuickBaseAPIError,
    QuickBaseAuthError,
    QuickBaseError,
    QuickBaseNotFoundError,
)

__all__ = [
    "ConfigError",
    "QuickBaseAPIError",
    "QuickBaseAuthError",
    "QuickBaseError",
    "QuickBaseNotFoundError",
]
