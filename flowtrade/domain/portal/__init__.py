"""Customer portal domain - token-authorized access to a single quote or invoice"""

from .errors import (
    InvalidState,
    PortalError,
    RateLimited,
    ResourceNotFound,
    TokenExpired,
    TokenNotFound,
    TokenRevoked,
    UpstreamFailure,
)

__all__ = [
    "PortalError",
    "TokenNotFound",
    "ResourceNotFound",
    "TokenExpired",
    "TokenRevoked",
    "InvalidState",
    "RateLimited",
    "UpstreamFailure",
]
