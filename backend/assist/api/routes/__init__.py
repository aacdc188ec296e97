# API Routes Module
from assist.api.routes import (
    access,
    admin,
    checkout,
    webhooks,
)

__all__ = [
    "access",
    "admin",
    "checkout",
    "webhooks",
]
