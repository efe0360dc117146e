"""
Exception Module

Structured exception hierarchy for the cover-letter API core.
All exceptions are organized by theme for better maintainability and debuggability.

Module Structure:
-----------------
- **base.py**: CoverlineError base class + ConfigurationError
- **cache.py**: Cache-related exceptions (Redis, memory tier)
- **rate_limit.py**: Rate limiting exceptions
- **api.py**: Client-facing errors that map to JSON error responses

Usage:
------
```python
# Import specific exceptions
from coverline.core.exceptions import CacheConnectionError, AuthorizationError

# Or import by category
from coverline.core.exceptions.cache import CacheError, CacheTimeoutError
```

Author: Platform Team
Date: 2025-12-08
"""

# API exceptions
from coverline.core.exceptions.api import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    RequestValidationError,
    ResourceNotFoundError,
)

# Base exception
from coverline.core.exceptions.base import ConfigurationError, CoverlineError

# Cache exceptions
from coverline.core.exceptions.cache import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CacheTimeoutError,
)

# Rate limit exceptions
from coverline.core.exceptions.rate_limit import (
    QuotaConfigurationError,
    RateLimitError,
    RateLimitExceededError,
)

__all__ = [
    # Base
    "CoverlineError",
    "ConfigurationError",
    # Cache
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "CacheTimeoutError",
    # Rate Limit
    "RateLimitError",
    "RateLimitExceededError",
    "QuotaConfigurationError",
    # API
    "ApiError",
    "RequestValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "ResourceNotFoundError",
]
