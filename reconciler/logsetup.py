import os
import logging

DAO_RECON_LOG_LEVEL = os.getenv('DAO_RECON_LOG_LEVEL', 'INFO').upper()

def get_logger(name: str, level=None):
    """Stream logger for code that runs outside of sanic (config loading, the CLI)."""

    logger = logging.getLogger(f"reconciler.{name}")

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
        logger.setLevel(level or getattr(logging, DAO_RECON_LOG_LEVEL, logging.INFO))

    logger.propagate = False
    return logger
