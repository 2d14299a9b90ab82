from closeboard.core.config import get_config
from closeboard.core.errors import ConflictError, NotFoundError, ServiceError, UpstreamError, ValidationError
from closeboard.core.logging import setup_logging

__all__ = [
    "ConflictError",
    "NotFoundError",
    "ServiceError",
    "UpstreamError",
    "ValidationError",
    "get_config",
    "setup_logging",
]
