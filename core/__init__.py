"""
Commit Stream Core Library.

Shared configuration, structured logging, constants and Redis connectivity
used by the service packages.

Usage:
    # Config
    from core.config import get_settings, Settings

    # Logging
    from core.logging import get_logger, configure_logging

    # Redis
    from core.redis_client import connect_redis
"""

__version__ = "1.0.0"

# Users should import directly from submodules:
#   from core.config import get_settings
#   from core.logging import get_logger
