"""
Structured logging configuration using structlog.

All logs go to stderr to avoid interfering with MCP protocol on stdout.
Credential-looking keys are masked before rendering.
"""
import logging
import sys
from pathlib import Path

import structlog

SENSITIVE_KEYS = ("api_key", "apikey", "token", "password", "secret", "auth_config")


def redact_secrets(logger, method_name: str, event_dict: dict) -> dict:
    """Mask values whose key names look like credentials."""
    for key in list(event_dict):
        if any(marker in key.lower() for marker in SENSITIVE_KEYS):
            event_dict[key] = "**********"
    return event_dict


def setup_logging(
    level: str = "INFO",
    json_logs: bool = True,
    log_dir: Path | None = None
) -> None:
    """
    Configure structured logging with structlog.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON format. If False, use console format
        log_dir: Optional directory for file logging
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    # stderr only: stdout belongs to the MCP stdio transport
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, level))

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "mcp-deploy.log")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Third-party loggers: WARNING and above
    for noisy in ("urllib3", "docker", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(logging.WARNING, root_logger.level))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
