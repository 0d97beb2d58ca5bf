# -*- coding: utf-8 -*-
"""Logging configuration for torpic."""

# Import logging.
import logging

# Import sys for the console stream.
import sys

# Import typing primitives.
from typing import Optional


def setup_logging(level: str = "INFO", rank: int = 0, log_file: Optional[str] = None) -> None:
    """Configure the 'torpic' logger; every record carries the world rank."""
    logger = logging.getLogger("torpic")
    logger.setLevel(level)

    # Avoid duplicate handlers when called more than once.
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        f"%(asctime)s [rank {rank}] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Optional per-rank log file.
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
