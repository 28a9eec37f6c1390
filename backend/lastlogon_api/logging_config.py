import logging
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def configure_logging(level: str = 'INFO', log_file: Optional[str] = None, verbose: bool = False):
    """Install console (and optional file) handlers on the root logger."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    # Transport libraries are chatty at INFO
    logging.getLogger('pypsrp').setLevel(logging.WARNING)
    logging.getLogger('ldap3').setLevel(logging.WARNING)
