"""
Rate Limiting

slowapi limiter for the checkout and access routes. Requests are bucketed
per authenticated account; the bearer dependency stores the account id on
``request.state`` before the limit is checked. Unauthenticated requests fall
back to the client address.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from assist.config.settings import get_settings


def account_key(request: Request) -> str:
    account_id = getattr(request.state, "account_id", None)
    if account_id:
        return f"account:{account_id}"
    return f"ip:{get_remote_address(request)}"


def checkout_limit() -> str:
    return get_settings().rate_limit_checkout


def access_limit() -> str:
    return get_settings().rate_limit_access


limiter = Limiter(key_func=account_key, storage_uri="memory://")
