"""Handler modules for infrastructure machines and their jobs."""

# Import handlers to register them - all handlers register themselves via @kopf decorators
from . import job  # noqa: F401
from . import machine  # noqa: F401
