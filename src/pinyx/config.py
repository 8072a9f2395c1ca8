"""Runtime switches.

Production mode relaxes the undeclared-state policy: writes to top-level keys
a store never declared are dropped with a warning instead of raising
UndeclaredStateError. The default comes from the PINYX_ENV environment
variable; call set_production() once at startup to override it.
"""

import os

_production: bool = os.environ.get("PINYX_ENV", "").strip().lower() == "production"


def set_production(flag: bool) -> None:
    """Enable or disable production mode process-wide."""
    global _production
    _production = bool(flag)


def is_production() -> bool:
    return _production
