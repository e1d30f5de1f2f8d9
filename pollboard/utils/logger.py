import logging
import sys
from typing import Optional
import structlog
from pollboard.core.config import is_production, settings


def setup_logging(log_level: Optional[str] = None) -> None:
    """
    Setup application logging configuration.

    Args:
        log_level: Optional log level override
    """
    level = log_level or ("DEBUG" if settings.debug else "INFO")

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if is_production()
            else structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logger = structlog.get_logger("pollboard")
    logger.info(
        "Logging configured",
        level=level,
        environment=settings.environment,
        store_backend=settings.store_backend
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name

    Returns:
        structlog.BoundLogger: Structured logger instance
    """
    return structlog.get_logger(name)


class RequestLogger:
    """Logger for HTTP requests."""

    def __init__(self):
        self.logger = get_logger("request")

    def log_request(self, method: str, path: str, status_code: int,
                   process_time: float, user_id: Optional[str] = None):
        """
        Log HTTP request details.

        Args:
            method: HTTP method
            path: Request path
            status_code: Response status code
            process_time: Request processing time
            user_id: Optional user ID
        """
        self.logger.info(
            "HTTP request",
            method=method,
            path=path,
            status_code=status_code,
            process_time=process_time,
            user_id=user_id
        )


class StoreLogger:
    """Logger for persistence store operations."""

    def __init__(self, backend: str):
        self.logger = get_logger("store").bind(backend=backend)

    def log_error(self, error: str, operation: Optional[str] = None,
                  table: Optional[str] = None):
        """
        Log a failed store call. The details stay in the logs only.

        Args:
            error: Error message
            operation: Store operation (insert, select, ...)
            table: Table the operation targeted
        """
        self.logger.error(
            "Store error",
            error=error,
            operation=operation,
            table=table
        )


class SecurityLogger:
    """Logger for security events."""

    def __init__(self):
        self.logger = get_logger("security")

    def log_invalid_token(self, path: str, ip_address: Optional[str] = None):
        """
        Log a bearer token that failed verification.

        Args:
            path: Request path
            ip_address: Optional IP address
        """
        self.logger.warning(
            "Invalid bearer token",
            path=path,
            ip_address=ip_address
        )

    def log_forbidden(self, action: str, resource_id: str, user_id: str):
        """
        Log an authenticated user acting on a resource they do not own.

        Args:
            action: Attempted action
            resource_id: Target resource identifier
            user_id: Acting user ID
        """
        self.logger.warning(
            "Forbidden action",
            action=action,
            resource_id=resource_id,
            user_id=user_id
        )
