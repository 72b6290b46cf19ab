"""Reference TLS gateway built on the proxy adapter.

One HTTPS listener serves every registered domain:
- the TLS context starts with the default self-signed pair and swaps in the
  certificate the registry names for the client's SNI
- each request is routed by its Host header to a static root or a local
  upstream port, with WebSocket upgrades relayed
- an optional plain HTTP listener redirects to HTTPS

Registry changes are picked up on the next handshake or request; there is
no reload step.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import ssl
from pathlib import Path
from urllib.parse import unquote

import aiohttp
import structlog
from aiohttp import WSMsgType, web

from hostgate.domains.models import CertificatePaths, ProxyRoute, StaticRoute
from hostgate.proxy.adapter import ProxyAdapter

logger = structlog.get_logger()

HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Headers aiohttp regenerates for the upstream WebSocket handshake.
_WS_HANDSHAKE_HEADERS = frozenset(
    {
        "sec-websocket-key",
        "sec-websocket-version",
        "sec-websocket-extensions",
        "sec-websocket-protocol",
    }
)

_CIPHERS = "ECDHE+AESGCM:DHE+AESGCM:ECDHE+CHACHA20:DHE+CHACHA20"


def parse_bind(bind: str) -> tuple[str, int]:
    """Parse bind address into host and port."""
    if ":" in bind:
        host, port = bind.rsplit(":", 1)
        return host.strip("[]") or "0.0.0.0", int(port)
    return "0.0.0.0", int(bind)


def _new_server_context(paths: CertificatePaths) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ciphers(_CIPHERS)
    context.load_cert_chain(paths.cert_path, paths.key_path)
    return context


def forwarded_headers(
    request: web.Request, host: str, drop: frozenset[str] = frozenset()
) -> dict[str, str]:
    """Copy request headers for the upstream and add the X-Forwarded-* set."""
    headers = {}
    for key, value in request.headers.items():
        key_lower = key.lower()
        if key_lower in HOP_BY_HOP or key_lower in drop:
            continue
        headers[key] = value

    remote = request.remote or ""
    previous = request.headers.get("X-Forwarded-For")
    headers["X-Forwarded-For"] = f"{previous}, {remote}" if previous else remote
    headers["X-Forwarded-Proto"] = "https" if request.secure else "http"
    headers["X-Forwarded-Host"] = host
    headers["X-Real-IP"] = remote
    return headers


def resolve_static_path(route: StaticRoute, request_path: str) -> Path | None:
    """Map a request path onto the static root.

    Tries the literal file, then ``<dir>/<index>`` for directories, then the
    root index document. Paths escaping the root are never served.
    """
    root = Path(route.root_path).resolve()
    relative = unquote(request_path).lstrip("/")
    candidate = (root / relative).resolve()

    if candidate != root and root not in candidate.parents:
        return None
    if candidate.is_dir():
        candidate = candidate / route.index
    if candidate.is_file():
        return candidate

    fallback = root / route.index
    if fallback.is_file():
        return fallback
    return None


class Gateway:
    """aiohttp listener that selects certificates and backends per domain."""

    def __init__(
        self,
        adapter: ProxyAdapter,
        default_certificate: CertificatePaths,
        https_bind: str = "0.0.0.0:443",
        http_bind: str | None = "0.0.0.0:80",
        proxy_timeout: float | None = 600.0,
        handshake_adapter: ProxyAdapter | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            adapter: Registry queries for certificates and routes.
            default_certificate: Pair served when SNI matches no record.
            https_bind: TLS listener address.
            http_bind: Redirect listener address, None to disable.
            proxy_timeout: Total timeout for proxied requests, None or 0 for none.
            handshake_adapter: Adapter for SNI lookups, ``adapter`` by default.
                Give it a store with a short lock timeout.
        """
        self.adapter = adapter
        self.handshake_adapter = handshake_adapter or adapter
        self.default_certificate = default_certificate
        self.https_bind = https_bind
        self.http_bind = http_bind
        self.proxy_timeout = proxy_timeout or None

        self._contexts: dict[tuple[str, str, float, float], ssl.SSLContext] = {}
        self._ssl_context: ssl.SSLContext | None = None
        self._session: aiohttp.ClientSession | None = None
        self._runners: list[web.AppRunner] = []
        self._websockets: set[web.WebSocketResponse] = set()

    # TLS

    def create_ssl_context(self) -> ssl.SSLContext:
        """Create the listener context with the default pair and SNI switching."""
        context = _new_server_context(self.default_certificate)
        context.sni_callback = self._sni_callback
        logger.info("TLS context created", cert=self.default_certificate.cert_path)
        return context

    def context_for(self, paths: CertificatePaths) -> ssl.SSLContext:
        """Return a context for ``paths``, rebuilt when either file changes."""
        key = (
            paths.cert_path,
            paths.key_path,
            os.stat(paths.cert_path).st_mtime,
            os.stat(paths.key_path).st_mtime,
        )
        context = self._contexts.get(key)
        if context is None:
            for stale in [k for k in self._contexts if k[:2] == key[:2]]:
                del self._contexts[stale]
            context = _new_server_context(paths)
            self._contexts[key] = context
            logger.debug("Loaded certificate", cert=paths.cert_path)
        return context

    def _sni_callback(
        self, ssl_object: ssl.SSLObject, server_name: str | None, _context: ssl.SSLContext
    ) -> None:
        # Runs on the event loop. The registry lookup is synchronous and can
        # block every connection for up to the handshake adapter's sqlite
        # timeout while a writer holds the lock.
        paths = self.handshake_adapter.certificate_paths(server_name)
        if paths is None:
            return None
        try:
            ssl_object.context = self.context_for(paths)
        except (OSError, ssl.SSLError) as e:
            logger.error(
                "Failed to load certificate for SNI",
                sni=server_name,
                cert=paths.cert_path,
                error=str(e),
            )
        return None

    # HTTP

    def create_app(self) -> web.Application:
        # 0 disables the request body size limit; upstreams enforce their own.
        app = web.Application(client_max_size=0)
        app.router.add_route("*", "/{path:.*}", self.handle_request)
        return app

    def create_redirect_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{path:.*}", self.handle_redirect)
        return app

    async def handle_redirect(self, request: web.Request) -> web.Response:
        host = request.host.rsplit(":", 1)[0] if request.host.count(":") == 1 else request.host
        _, https_port = parse_bind(self.https_bind)
        authority = host if https_port == 443 else f"{host}:{https_port}"
        raise web.HTTPPermanentRedirect(f"https://{authority}{request.path_qs}")

    async def handle_request(self, request: web.Request) -> web.StreamResponse:
        host = request.host
        route = await asyncio.to_thread(self.adapter.resolve_route, host)
        if route is None:
            return web.Response(
                text=f"No site is configured for {host}", status=404, content_type="text/plain"
            )

        if isinstance(route, StaticRoute):
            return await self._serve_static(request, route)

        connection_header = request.headers.get("Connection", "").lower()
        upgrade_header = request.headers.get("Upgrade", "").lower()
        if "upgrade" in connection_header and upgrade_header == "websocket":
            return await self._proxy_websocket(request, route, host)
        return await self._proxy_http(request, route, host)

    async def _serve_static(self, request: web.Request, route: StaticRoute) -> web.StreamResponse:
        if request.method not in ("GET", "HEAD"):
            return web.Response(status=405, headers={"Allow": "GET, HEAD"})
        path = await asyncio.to_thread(resolve_static_path, route, request.path)
        if path is None:
            return web.Response(text="Not Found", status=404, content_type="text/plain")
        return web.FileResponse(path)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.proxy_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout, auto_decompress=False)
        return self._session

    async def _proxy_http(
        self, request: web.Request, route: ProxyRoute, host: str
    ) -> web.StreamResponse:
        url = f"http://{route.upstream}{request.path_qs}"
        headers = forwarded_headers(request, host)
        body = await request.read()
        response: web.StreamResponse | None = None

        try:
            async with self._get_session().request(
                request.method,
                url,
                headers=headers,
                data=body or None,
                allow_redirects=False,
            ) as upstream:
                response = web.StreamResponse(status=upstream.status, reason=upstream.reason)
                for key, value in upstream.headers.items():
                    if key.lower() in HOP_BY_HOP or key.lower() == "content-length":
                        continue
                    response.headers.add(key, value)
                if upstream.content_length is not None:
                    response.content_length = upstream.content_length
                await response.prepare(request)
                async for chunk in upstream.content.iter_chunked(64 * 1024):
                    await response.write(chunk)
                await response.write_eof()
                return response
        except TimeoutError:
            if response is not None and response.prepared:
                return response
            logger.warning("Upstream timed out", host=host, upstream=route.upstream)
            return web.Response(text="Gateway Timeout", status=504, content_type="text/plain")
        except aiohttp.ClientError as e:
            logger.warning(
                "Upstream unavailable", host=host, upstream=route.upstream, error=str(e)
            )
            if response is not None and response.prepared:
                return response
            return web.Response(text="Bad Gateway", status=502, content_type="text/plain")

    async def _proxy_websocket(
        self, request: web.Request, route: ProxyRoute, host: str
    ) -> web.StreamResponse:
        subprotocols = []
        if "Sec-WebSocket-Protocol" in request.headers:
            subprotocols = [p.strip() for p in request.headers["Sec-WebSocket-Protocol"].split(",")]

        headers = forwarded_headers(request, host, drop=_WS_HANDSHAKE_HEADERS)
        url = f"http://{route.upstream}{request.path_qs}"
        try:
            upstream = await self._get_session().ws_connect(
                url, headers=headers, protocols=subprotocols
            )
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.warning(
                "WebSocket upstream unavailable", host=host, upstream=route.upstream, error=str(e)
            )
            return web.Response(text="Bad Gateway", status=502, content_type="text/plain")

        ws = web.WebSocketResponse(protocols=[upstream.protocol] if upstream.protocol else ())
        await ws.prepare(request)
        self._websockets.add(ws)
        logger.info("WebSocket connected", host=host, path=request.path_qs)

        async def pump(source, sink) -> None:
            async for msg in source:
                if msg.type == WSMsgType.TEXT:
                    await sink.send_str(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await sink.send_bytes(msg.data)
                elif msg.type in (WSMsgType.CLOSE, WSMsgType.ERROR):
                    break

        tasks = [asyncio.create_task(pump(ws, upstream)), asyncio.create_task(pump(upstream, ws))]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, ConnectionResetError):
                    await task
            await upstream.close()
            await ws.close()
            self._websockets.discard(ws)
            logger.info("WebSocket closed", host=host, path=request.path_qs)
        return ws

    # Lifecycle

    async def start(self) -> None:
        """Bind the HTTPS listener and, if configured, the redirect listener."""
        self._ssl_context = self.create_ssl_context()

        https_runner = web.AppRunner(self.create_app())
        await https_runner.setup()
        self._runners.append(https_runner)
        https_host, https_port = parse_bind(self.https_bind)
        site = web.TCPSite(https_runner, https_host, https_port, ssl_context=self._ssl_context)
        await site.start()
        logger.info("HTTPS listener started", host=https_host, port=https_port)

        if self.http_bind:
            http_runner = web.AppRunner(self.create_redirect_app())
            await http_runner.setup()
            self._runners.append(http_runner)
            http_host, http_port = parse_bind(self.http_bind)
            await web.TCPSite(http_runner, http_host, http_port).start()
            logger.info("HTTP redirect listener started", host=http_host, port=http_port)

    async def stop(self) -> None:
        """Stop the gateway gracefully."""
        logger.info("Stopping gateway...")
        for ws in list(self._websockets):
            with contextlib.suppress(Exception):
                await ws.close()
        for runner in self._runners:
            await runner.cleanup()
        self._runners.clear()
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._contexts.clear()
