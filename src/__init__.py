"""
Embellish - bounded-concurrency orchestration of embellishment tasks.

Applies an externally executed capability to every unit of work in a
resource, a few items at a time, driven by completion events.
"""

__version__ = "0.1.0"

from src.orchestration.service import EmbellishmentService, create_service

__all__ = ["EmbellishmentService", "create_service", "__version__"]
