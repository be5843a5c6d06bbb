"""Simple logger utility."""
import logging

logger = logging.getLogger("poschat")
if not logger.handlers:
    h = logging.StreamHandler()
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    h.setFormatter(fmt)
    logger.addHandler(h)
    logger.setLevel(logging.INFO)

def get_logger(name: str = None):
    """Return the package logger, or a child of it when ``name`` is given."""
    if name:
        return logger.getChild(name)
    return logger
