"""leadsync: marketing-data synchronization engine.

Applications configure logging once at startup with ``leadsync.setup_logging()``;
the engine itself lives under ``leadsync.app`` (ratelimit, bulk, keys).
"""

from leadsync.app.core.logging import setup_logging

__version__ = "0.1.0"

__all__ = ["setup_logging", "__version__"]
