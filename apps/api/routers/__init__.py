"""Routers package."""

from . import (
    health,
    auth,
    user,
    describe,
    history,
    payments,
    admin,
)
