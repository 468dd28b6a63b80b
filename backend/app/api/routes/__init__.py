# API Routes Module
from app.api.routes import (
    admin_billing,
    billing,
    webhooks,
)

__all__ = [
    "admin_billing",
    "billing",
    "webhooks",
]
