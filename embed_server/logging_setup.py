"""
Process-wide logging setup. Only main calls this; components receive a logger instead.
"""
import logging
import sys
from pathlib import Path

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(environment: str, log_dir: str = "logs") -> None:
    """
    Development: INFO to stdout. Production: ERROR to stdout, plus logs/error.log (errors)
    and logs/combined.log (everything at the configured level).
    """
    production = environment == "production"
    level = logging.ERROR if production else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if production:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        error_file = logging.FileHandler(Path(log_dir) / "error.log")
        error_file.setLevel(logging.ERROR)
        handlers.append(error_file)
        handlers.append(logging.FileHandler(Path(log_dir) / "combined.log"))
    logging.basicConfig(level=level, format=_FORMAT, handlers=handlers, force=True)
