"""Client address resolution.

``X-Forwarded-For`` is never read here. When the deployment runs behind a
proxy listed in ``TRUSTED_PROXIES``, uvicorn's ``ProxyHeadersMiddleware``
(mounted outermost by ``create_app``) has already replaced the socket peer
with the forwarded client address. Any other caller gets its socket address.
"""

from __future__ import annotations

from starlette.requests import Request


def get_client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"
