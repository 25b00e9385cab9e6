"""Courier bounded context — notification delivery engine.

Admits notification requests, applies consent, quiet-hours and rate-limit
policy, fans sends out to channel adapters (email, SMS, push, in-app) and
tracks every delivery lifecycle event for audit and retry.
"""

import structlog
from protean.domain import Domain

courier = Domain(name="courier")

logger = structlog.get_logger(__name__)
