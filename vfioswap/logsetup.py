"""Console and syslog logging setup for the CLI."""

from __future__ import annotations

import logging
import logging.handlers
import sys

LOG_TAG = "vfioswap"
SYSLOG_ADDRESS = "/dev/log"


def configure_logging(*, verbose: bool = False, syslog: bool = False) -> None:
    logger = logging.getLogger("vfioswap")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console)

    if syslog:
        try:
            handler = logging.handlers.SysLogHandler(address=SYSLOG_ADDRESS)
        except OSError as exc:
            logger.warning("Syslog unavailable at %s: %s", SYSLOG_ADDRESS, exc)
            return
        handler.ident = f"{LOG_TAG}: "
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        logger.addHandler(handler)
