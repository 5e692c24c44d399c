"""Handler modules for CRD resources."""

# Import handlers to register them - all handlers register themselves via @kopf decorators
from . import globaldatasource  # noqa: F401
from . import library  # noqa: F401
from . import system  # noqa: F401
