"""HTTPS control API over the master registry, with SSE device event streams."""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import queue
import select
import ssl
import threading
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qsl, unquote, urlparse

from loguru import logger

from fleetcore.config.schema import ApiConfig
from fleetcore.errors import ConfigurationError, UnknownCommand

SSE_KEEPALIVE = b": keep-alive\n\n"
SSE_POLL_SECONDS = 0.25


def json_response(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")


def parse_query(query: str) -> dict[str, Any]:
    """Ordered query mapping; repeated keys collect into a list."""
    params: dict[str, Any] = {}
    for key, value in parse_qsl(query or "", keep_blank_values=True):
        if key in params:
            existing = params[key]
            params[key] = [*existing, value] if isinstance(existing, list) else [existing, value]
        else:
            params[key] = value
    return params


def parse_command_params(method: str, query: dict[str, Any], body: Any) -> list[Any]:
    """Positional command arguments for a request.

    Query parameters win when the method is GET or any are present; otherwise
    the body is used: object values in key order, or an array as-is.
    """
    if method.upper() == "GET" or query:
        container: Any = query
    else:
        container = body
    if isinstance(container, dict):
        return list(container.values())
    if isinstance(container, list):
        return list(container)
    return []


class _ApiRequestHandler(BaseHTTPRequestHandler):
    """Route table dispatch into the master registry."""

    master: Any = None
    config: ApiConfig = ApiConfig()
    stop_event: threading.Event = threading.Event()

    server_version = "fleetcore/0.1"

    def do_GET(self) -> None:  # noqa: N802
        self._handle("GET")

    def do_HEAD(self) -> None:  # noqa: N802
        self._handle("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._handle("POST")

    def do_PUT(self) -> None:  # noqa: N802
        self._handle("PUT")

    def do_PATCH(self) -> None:  # noqa: N802
        self._handle("PATCH")

    def do_DELETE(self) -> None:  # noqa: N802
        self._handle("DELETE")

    def do_OPTIONS(self) -> None:  # noqa: N802
        self.send_response(HTTPStatus.NO_CONTENT)
        self._send_cors_headers()
        self.send_header("Access-Control-Allow-Methods", "GET, POST, PUT, PATCH, DELETE, OPTIONS")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.debug("api " + fmt % args)

    @staticmethod
    def _is_authorized_request(
        headers: Any,
        *,
        enabled: bool,
        user: str,
        password: str,
    ) -> bool:
        if not enabled:
            return True
        raw_auth = str(headers.get("Authorization", "")).strip()
        if not raw_auth.lower().startswith("basic "):
            return False
        try:
            decoded = base64.b64decode(raw_auth[6:].strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return False
        candidate_user, sep, candidate_pass = decoded.partition(":")
        if not sep:
            return False
        user_ok = hmac.compare_digest(candidate_user.encode("utf-8"), user.encode("utf-8"))
        pass_ok = hmac.compare_digest(candidate_pass.encode("utf-8"), password.encode("utf-8"))
        return user_ok and pass_ok

    def _ensure_authorized(self) -> bool:
        auth = self.config.auth
        if self._is_authorized_request(
            self.headers,
            enabled=self.config.basic_auth_enabled,
            user=auth.user,
            password=auth.password,
        ):
            return True
        self._send_json(
            HTTPStatus.UNAUTHORIZED,
            {"error": "unauthorized"},
            extra_headers={"WWW-Authenticate": 'Basic realm="fleetcore"'},
        )
        return False

    def _handle(self, method: str) -> None:
        if not self._ensure_authorized():
            return
        parsed = urlparse(self.path)
        parts = [unquote(p) for p in parsed.path.split("/") if p]
        query = parse_query(parsed.query)
        body: Any = None
        if method == "GET":
            self._discard_body()
        else:
            ok, body = self._read_body()
            if not ok:
                return
        if not parts or parts[0] != "robots":
            self._not_found()
            return

        n = len(parts)
        if n == 1 and method == "GET":
            self._send_json(HTTPStatus.OK, [bot.data() for bot in self.master.robots])
        elif n == 2 and method == "GET":
            self.master.find_robot(parts[1], self._respond_with(lambda bot: bot.data()))
        elif n == 3 and method == "GET" and parts[2] == "commands":
            self.master.find_robot(parts[1], self._respond_with(lambda bot: bot.data()["commands"]))
        elif n == 3 and method == "GET" and parts[2] == "devices":
            self.master.find_robot(parts[1], self._respond_with(lambda bot: bot.data()["devices"]))
        elif n == 3 and method == "GET" and parts[2] == "connections":
            self.master.find_robot(parts[1], self._respond_with(lambda bot: bot.data()["connections"]))
        elif n == 4 and parts[2] == "commands":
            params = parse_command_params(method, query, body)
            self.master.find_robot(parts[1], self._invoke_with(parts[3], params))
        elif n == 4 and method == "GET" and parts[2] == "devices":
            self.master.find_robot_device(parts[1], parts[3], self._respond_with(lambda dev: dev.data()))
        elif n == 4 and method == "GET" and parts[2] == "connections":
            self.master.find_robot_connection(
                parts[1], parts[3], self._respond_with(lambda conn: conn.data())
            )
        elif n == 5 and method == "GET" and parts[2] == "devices" and parts[4] == "commands":
            self.master.find_robot_device(
                parts[1], parts[3], self._respond_with(lambda dev: dev.data()["commands"])
            )
        elif n == 6 and parts[2] == "devices" and parts[4] == "commands":
            params = parse_command_params(method, query, body)
            self.master.find_robot_device(parts[1], parts[3], self._invoke_with(parts[5], params))
        elif n == 6 and method == "GET" and parts[2] == "devices" and parts[4] == "events":
            error, device = self.master.find_robot_device(parts[1], parts[3], lambda e, d: (e, d))
            if error:
                self._send_json(HTTPStatus.OK, error)
            else:
                self._stream_events(device, parts[5])
        else:
            self._not_found()

    def _respond_with(self, render: Any) -> Any:
        def _callback(error: dict[str, str] | None, target: Any) -> None:
            if error:
                self._send_json(HTTPStatus.OK, error)
                return
            self._send_json(HTTPStatus.OK, render(target))

        return _callback

    def _invoke_with(self, command: str, params: list[Any]) -> Any:
        def _callback(error: dict[str, str] | None, target: Any) -> None:
            if error:
                self._send_json(HTTPStatus.OK, error)
                return
            try:
                result = target.invoke(command, *params)
            except UnknownCommand as e:
                self._send_json(HTTPStatus.OK, {"error": str(e)})
                return
            except Exception as e:
                logger.error(f"api command '{command}' on {target} failed: {e}")
                self._send_json(HTTPStatus.OK, {"error": f"Command '{command}' failed: {e}"})
                return
            self._send_json(HTTPStatus.OK, {"result": result})

        return _callback

    def _stream_events(self, device: Any, event: str) -> None:
        if self.command == "HEAD":
            self.send_response(HTTPStatus.OK)
            self.send_header("Content-Type", "text/event-stream")
            self._send_cors_headers()
            self.end_headers()
            return
        frames: queue.Queue[Any] = queue.Queue()

        def _listener(payload: Any) -> None:
            frames.put(payload)

        device.events.subscribe(event, _listener)
        heartbeat = max(0.01, float(self.config.sse_heartbeat_seconds))
        poll = min(heartbeat, SSE_POLL_SECONDS)
        try:
            self.send_response(HTTPStatus.OK)
            self.send_header("Content-Type", "text/event-stream")
            self.send_header("Cache-Control", "no-cache")
            self.send_header("Connection", "keep-alive")
            self._send_cors_headers()
            self.end_headers()
            self.wfile.flush()
            last_write = time.monotonic()
            while not self.stop_event.is_set():
                try:
                    payload = frames.get(timeout=poll)
                except queue.Empty:
                    if self._peer_closed():
                        logger.debug(f"api event stream {device.name}/{event}: client went away")
                        break
                    if time.monotonic() - last_write >= heartbeat:
                        self._write_stream(SSE_KEEPALIVE)
                        last_write = time.monotonic()
                    continue
                self._write_stream(b"data: " + json_response(payload) + b"\n\n")
                last_write = time.monotonic()
        except OSError as e:
            logger.debug(f"api event stream {device.name}/{event} closed: {e}")
        finally:
            device.events.unsubscribe(event, _listener)
            self.close_connection = True

    def _peer_closed(self) -> bool:
        """True once the client has closed its side of an event stream."""
        sock = self.connection
        try:
            readable, _, _ = select.select([sock], [], [], 0)
        except (OSError, ValueError):
            return True
        if not readable:
            return False
        previous = sock.gettimeout()
        sock.settimeout(SSE_POLL_SECONDS)
        try:
            # Stream clients send nothing after the request; EOF reads empty.
            return not sock.recv(1)
        except (TimeoutError, ssl.SSLWantReadError):
            return False
        except OSError:
            return True
        finally:
            try:
                sock.settimeout(previous)
            except OSError:
                pass

    def _write_stream(self, chunk: bytes) -> None:
        self.wfile.write(chunk)
        self.wfile.flush()

    def _discard_body(self) -> None:
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = 0
        if length <= 0:
            return
        if length > max(1024, int(self.config.max_request_body_bytes)):
            self.close_connection = True
            return
        self.rfile.read(length)

    def _read_body(self) -> tuple[bool, Any]:
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = 0
        max_body = max(1024, int(self.config.max_request_body_bytes))
        if length > max_body:
            self._send_json(
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
                {"error": f"request body too large (max {max_body} bytes)"},
            )
            return False, None
        raw = self.rfile.read(length) if length > 0 else b""
        if not raw.strip():
            return True, None
        content_type = str(self.headers.get("Content-Type", "")).lower()
        text = raw.decode("utf-8", errors="replace")
        if "application/x-www-form-urlencoded" in content_type:
            return True, parse_query(text)
        try:
            return True, json.loads(text)
        except json.JSONDecodeError:
            self._send_json(HTTPStatus.BAD_REQUEST, {"error": "invalid json"})
            return False, None

    def _not_found(self) -> None:
        self._send_json(HTTPStatus.NOT_FOUND, {"error": "unknown endpoint"})

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", self.config.allowed_origin)
        self.send_header("Access-Control-Allow-Headers", "Content-Type")

    def _send_json(
        self,
        code: HTTPStatus,
        payload: Any,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        body = json_response(payload)
        self.send_response(code)
        self._send_cors_headers()
        for key, value in (extra_headers or {}).items():
            self.send_header(key, value)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)


class _TLSHTTPServer(ThreadingHTTPServer):
    """Threaded server that performs the TLS handshake on the request thread."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], handler: type, context: ssl.SSLContext) -> None:
        self.ssl_context = context
        super().__init__(address, handler)

    def finish_request(self, request: Any, client_address: Any) -> None:
        try:
            tls = self.ssl_context.wrap_socket(request, server_side=True)
        except OSError as e:
            logger.debug(f"api TLS handshake from {client_address[0]} failed: {e}")
            return
        try:
            self.RequestHandlerClass(tls, client_address, self)
        finally:
            try:
                tls.close()
            except OSError:
                pass

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.opt(exception=True).debug(f"api request from {client_address[0]} aborted")


class ApiServer:
    """TLS-only HTTP interface over a :class:`~fleetcore.runtime.Master`."""

    title = "fleetcore API"
    parse_command_params = staticmethod(parse_command_params)

    def __init__(self, *, master: Any, config: ApiConfig | None = None) -> None:
        self.master = master
        self.config = config or ApiConfig()
        self.host = self.config.host
        self.port = int(self.config.port)
        self._context = self._build_context(self.config)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._server: _TLSHTTPServer | None = None

    @staticmethod
    def _build_context(config: ApiConfig) -> ssl.SSLContext:
        if not config.cert or not config.key:
            raise ConfigurationError("API requires TLS: set both 'cert' and 'key'")
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        try:
            context.load_cert_chain(certfile=config.cert, keyfile=config.key)
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationError(f"Unable to load TLS material: {e}") from e
        return context

    @property
    def url(self) -> str:
        return f"https://{self.host}:{self.port}"

    @property
    def running(self) -> bool:
        return self._server is not None

    def listen(self) -> "ApiServer":
        handler_cls = type("BoundApiRequestHandler", (_ApiRequestHandler,), {})
        handler_cls.master = self.master
        handler_cls.config = self.config
        handler_cls.stop_event = self._stop_event
        self._stop_event.clear()
        self._server = _TLSHTTPServer((self.host, self.port), handler_cls, self._context)
        self.port = int(self._server.server_address[1])
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="fleetcore-api",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"{self.title} is now online.")
        logger.info(f"Listening at {self.url}")
        return self

    def stop(self) -> None:
        self._stop_event.set()
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None
