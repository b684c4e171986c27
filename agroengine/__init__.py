"""Agronomic decision engine for sensor-instrumented fields."""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
