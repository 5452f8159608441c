"""
QuickBase error types

All failures raised by the client derive from QuickBaseError so callers
(MCP tools, CLI) can catch one base class.
"""
from typing import Any, Dict, Optional


class QuickBaseError(Exception):
    """Base class for QuickBase client errors"""


class ConfigError(QuickBaseError):
    """Missing or invalid configuration"""


class QuickBaseAPIError(QuickBaseError):
    """Non-2xx response (or transport failure) from the QuickBase REST API"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        description: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.description = description
        self.payload = payload or {}
        super().__init__(self.__str__())

    def __str__(self) -> str:
        text = self.message
        if self.status_code is not None:
            text = f"QuickBase API error {self.status_code}: {text}"
        if self.description:
            text = f"{text} ({self.description})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "status_code": self.status_code,
            "description": self.description,
        }


class QuickBaseAuthError(QuickBaseAPIError):
    """401/403 - bad token or missing permissions"""


class QuickBaseNotFoundError(QuickBaseAPIError):
    """404 - app, table, field or report does not exist"""
