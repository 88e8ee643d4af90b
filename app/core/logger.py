import logging
import os
import re
import sys
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from loguru import logger

from app.core.config import Environment, settings

if TYPE_CHECKING:
    from loguru import Record

# ============================================
# REQUEST CORRELATION
# ============================================
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


# ============================================
# SINKS
# ============================================
LOG_DIR = Path("logs")

# One file shared by all workers, lines carry the process ID
LOG_FILE = LOG_DIR / "receipt-entitlement.log"

LOG_LEVELS = {
    50: "CRITICAL",
    40: "ERROR",
    30: "WARNING",
    20: "INFO",
    10: "DEBUG",
    0: "NOTSET",
}

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>PID:{extra[process_id]}</magenta> | "
    "<yellow>ReqID:{extra[request_id]}</yellow> | "
    "<cyan>{name}:{function}:{line}</cyan> | "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss!UTC} | "
    "{level: <8} | "
    "PID:{extra[process_id]} | "
    "ReqID:{extra[request_id]} | "
    "{name}:{function}:{line} | "
    "{message}"
)


# ============================================
# REDACTION
# ============================================

# Base64 runs this long can only be receipt data or key material
BASE64_BLOB = re.compile(r"[A-Za-z0-9+/]{120,}={0,2}")
REDACTED = "[REDACTED]"


def redact_secrets(message: str) -> str:
    """
    Remove the shared secret, private key material and receipt data from a message.

    Args:
        message: The formatted log message

    Returns:
        str: The message with every secret replaced by [REDACTED]
    """
    if settings.apple_shared_secret:
        message = message.replace(settings.apple_shared_secret, REDACTED)

    return BASE64_BLOB.sub(REDACTED, message)


def correlation_filter(record: "Record") -> bool:
    """
    Add correlation ID and process ID to log records and redact secrets.

    The request ID is set per request by the logging middleware, so every
    line logged while verifying one receipt can be grouped together.

    Args:
        record (Record): Log record from Loguru.

    Returns:
        bool: Always True, no record is filtered out.
    """
    record["extra"]["request_id"] = request_id_var.get() or str(uuid.uuid4())[:8]
    record["extra"]["process_id"] = os.getpid()
    if "message" in record:
        record["message"] = redact_secrets(record["message"])

    return True


class InterceptHandler(logging.Handler):
    """
    Routes stdlib logging records (uvicorn, gunicorn, aiohttp) into Loguru.
    """

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that called the stdlib logger
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


# ============================================
# SETUP / TEARDOWN
# ============================================


def setup_logger():
    """
    Configure Loguru for the verification service.

    Console output for operators, and one rotating file shared by all
    workers. Both sinks are enqueued so logging never blocks a request
    waiting on Apple.

    Called once from the FastAPI lifespan startup.
    """
    logger.remove()

    log_level = LOG_LEVELS.get(settings.log_level, "INFO")

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level=logging.DEBUG if settings.current_environment == Environment.DEV else logging.INFO,
        colorize=True,
        enqueue=True,
        filter=correlation_filter,
        diagnose=False,
    )

    LOG_DIR.mkdir(exist_ok=True)

    logger.add(
        LOG_FILE,
        format=FILE_FORMAT,
        level=log_level,
        rotation="10 MB",
        retention="3 months",
        compression="gz",
        enqueue=True,
        filter=correlation_filter,
        backtrace=True,
        # Variable values would leak receipts and keys into the log file
        diagnose=False,
    )

    logger.info(
        f"Logger initialized | "
        f"Environment: {settings.current_environment.value} | "
        f"Store: {settings.resolved_apple_environment.value} | "
        f"Mode: {settings.verification_mode.value} | "
        f"Level: {log_level}"
    )


def configure_uvicorn_logging():
    """
    Replace Uvicorn's default logging with Loguru.

    Call this during FastAPI app startup, after setup_logger().
    """
    # Loguru does the actual level filtering
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name in logging.root.manager.loggerDict.keys():
        if name.startswith(("uvicorn", "gunicorn")):
            logging.getLogger(name).handlers = [InterceptHandler()]
            logging.getLogger(name).propagate = False

    logger.debug("Uvicorn logging configured to use Loguru")


def shutdown_logger():
    """
    Flush queued log messages before the worker exits.
    """
    logger.info("Shutting down logger...")
    logger.complete()
