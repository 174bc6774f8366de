from starlette.types import ASGIApp, Receive, Scope, Send


def resolve_client_ip(forwarded_for: str, proxies_count: int) -> str | None:
    """Pick the client address from ``X-Forwarded-For`` given N trusted proxies.

    The header reads ``client, proxy1, proxy2``; with N trusted hops the
    client sits at index ``-(N + 1)``. Returns None when the chain is shorter.
    """
    hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
    if proxies_count <= 0 or len(hops) <= proxies_count:
        return None
    return hops[-(proxies_count + 1)]


class TrustedProxiesMiddleware:
    """Rewrite ``scope["client"]`` so rate limiting and submission metadata see the real IP."""

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            headers = dict(scope.get("headers", []))
            real_ip = resolve_client_ip(headers.get(b"x-forwarded-for", b"").decode(), self.proxies_count)
            if real_ip:
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (real_ip, port)

        await self.app(scope, receive, send)
