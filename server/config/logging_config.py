"""Logging configuration"""
import logging
import sys

# Chatty third-party loggers; supabase talks through httpx/httpcore
_NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "postgrest")


def setup_logging(log_level: str = "INFO"):
    """Configure application logging.

    Safe to call more than once: the stdout handler is only installed
    on the first call.
    """
    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if not any(getattr(h, "_discovery_handler", False) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler._discovery_handler = True
        root_logger.addHandler(console_handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging configured with level: {log_level}")
