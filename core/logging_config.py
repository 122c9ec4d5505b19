"""Centralized logging configuration for the recalibration engine."""
import logging
import os
from typing import Optional


def configure_logging(run_id: Optional[str] = None) -> None:
    """Configure logging for a recalibration service run.

    Level comes from RECAL_LOG_LEVEL (default INFO). When a run id is
    given every line is prefixed with it so ticks from concurrent
    processes can be told apart.
    """
    level_name = os.environ.get("RECAL_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    run_prefix = f"[run_id={run_id}] " if run_id else ""
    fmt = "%(asctime)s %(levelname)s " + run_prefix + "%(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt, force=True)
