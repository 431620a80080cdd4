"""
py-formation: particle swarms that assemble into text and image formations.
"""

from .core import *  # noqa: F401,F403
from .core import __all__ as _core_all
from .log import configure_logging

__version__ = "0.1.0"

__all__ = list(_core_all) + ['configure_logging']
