from uuid import uuid4

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from intake.core import context


class RequestContextMiddleware:
    """Bind request id and client ip to context vars so every log line carries them."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode()[:128] or uuid4().hex
        client = scope.get("client")
        context.set_request_id(request_id)
        context.set_client_ip(client[0] if client else "-")

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers_list = list(message.get("headers", []))
                headers_list.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers_list
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            context.clear_context()
