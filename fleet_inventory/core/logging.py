import logging
import sys
from pythonjsonlogger import jsonlogger

def setup_logging(level: str = "INFO"):
    """
    Configures centralized JSON logging to stdout.
    Keeps application loggers at the requested level and quiets the
    transport and database layers.
    """
    # 1. Get the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # 2. Prevent duplicate logs by removing existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # 3. Create StreamHandler for stdout (container log collectors read it)
    log_handler = logging.StreamHandler(sys.stdout)

    # 4. Define JSON Format
    formatter = jsonlogger.JsonFormatter(
        fmt='%(asctime)s %(levelname)s %(name)s %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%SZ'
    )
    log_handler.setFormatter(formatter)
    root_logger.addHandler(log_handler)

    # 5. Library-Specific Verbosity Management
    logging.getLogger("fleet_inventory").setLevel(level)

    # Noise reduction (WARNING) for infrastructure and transport layers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)

    root_logger.info("Logging infrastructure initialized successfully.")
