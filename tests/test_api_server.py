import base64
import http.client
import json
import socket
import ssl
import time
from typing import Any
from urllib import request
from urllib.error import HTTPError

import pytest
import trustme

from fleetcore.api import ApiServer
from fleetcore.config import ApiConfig
from fleetcore.errors import ConfigurationError
from fleetcore.hardware import Driver, default_registry
from fleetcore.runtime import Master


class _FlakyDriver(Driver):
    name = "flaky"
    commands = ["explode", "echo"]

    def explode(self) -> None:
        raise RuntimeError("servo jammed")

    def echo(self, *args: Any) -> list[Any]:
        return list(args)


@pytest.fixture(scope="module")
def tls(tmp_path_factory: pytest.TempPathFactory) -> dict[str, Any]:
    ca = trustme.CA()
    server_cert = ca.issue_cert("127.0.0.1", "localhost")
    base = tmp_path_factory.mktemp("tls")
    cert_path = base / "server.crt"
    key_path = base / "server.key"
    with cert_path.open("wb") as f:
        for blob in server_cert.cert_chain_pems:
            f.write(blob.bytes())
    server_cert.private_key_pem.write_to_path(str(key_path))
    client_ctx = ssl.create_default_context()
    ca.configure_trust(client_ctx)
    return {"cert": str(cert_path), "key": str(key_path), "client": client_ctx}


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


def _wait_for(predicate, timeout: float = 5.0) -> bool:  # type: ignore[no-untyped-def]
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _build_master(tls: dict[str, Any], **api: Any) -> Master:
    registry = default_registry()
    registry.register_driver("flaky", _FlakyDriver)
    master = Master(registry=registry)
    master.api(
        {
            "host": "127.0.0.1",
            "port": _free_port(),
            "cert": tls["cert"],
            "key": tls["key"],
            "sse_heartbeat_seconds": 0.05,
            **api,
        }
    )
    master.robot(
        {
            "name": "Ultron",
            "connection": {"name": "loopback", "adaptor": "loopback", "port": "/dev/null"},
            "devices": [
                {"name": "ping", "driver": "ping"},
                {"name": "arm", "driver": "flaky"},
            ],
            "commands": {"hello": lambda my, who="world": f"hello {who}"},
        }
    )
    return master


def _call(
    tls: dict[str, Any],
    url: str,
    *,
    method: str = "GET",
    payload: Any = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, Any, Any]:
    body = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = request.Request(url, data=body, method=method)
    if body is not None:
        req.add_header("Content-Type", "application/json")
    for k, v in (headers or {}).items():
        req.add_header(k, v)
    try:
        with request.urlopen(req, timeout=5, context=tls["client"]) as resp:
            return int(resp.status), json.loads(resp.read().decode("utf-8")), resp.headers
    except HTTPError as e:
        return int(e.code), json.loads(e.read().decode("utf-8")), e.headers


def test_api_server_requires_tls_material() -> None:
    with pytest.raises(ConfigurationError):
        ApiServer(master=Master(), config=ApiConfig())
    with pytest.raises(ConfigurationError):
        ApiServer(master=Master(), config=ApiConfig(cert="/missing.crt", key="/missing.key"))


def test_api_introspection_routes(tls: dict[str, Any]) -> None:
    master = _build_master(tls)
    server = master.start_api()
    base = server.url
    bot = master.find_robot("Ultron")
    try:
        status, data, headers = _call(tls, f"{base}/robots")
        assert status == 200
        assert data == [bot.data()]
        assert headers["Access-Control-Allow-Origin"] == "*"
        assert headers["Access-Control-Allow-Headers"] == "Content-Type"
        assert headers["Content-Type"].startswith("application/json")

        status, data, _ = _call(tls, f"{base}/robots/Ultron")
        assert data["name"] == "Ultron"
        assert data["commands"] == ["hello", "ping", "explode", "echo"]

        _, data, _ = _call(tls, f"{base}/robots/Ultron/commands")
        assert data == bot.commands

        _, data, _ = _call(tls, f"{base}/robots/Ultron/devices")
        assert [d["name"] for d in data] == ["ping", "arm"]

        _, data, _ = _call(tls, f"{base}/robots/Ultron/devices/ping")
        assert data == bot.devices["ping"].data()
        assert data["connection"]["name"] == "loopback"

        _, data, _ = _call(tls, f"{base}/robots/Ultron/devices/ping/commands")
        assert data == ["ping"]

        _, data, _ = _call(tls, f"{base}/robots/Ultron/connections")
        assert data == [bot.connections["loopback"].data()]

        _, data, _ = _call(tls, f"{base}/robots/Ultron/connections/loopback")
        assert data["port"] == "/dev/null"
    finally:
        master.stop_api()


def test_api_lookup_errors_are_json(tls: dict[str, Any]) -> None:
    master = _build_master(tls)
    base = master.start_api().url
    try:
        status, data, _ = _call(tls, f"{base}/robots/Rob")
        assert status == 200
        assert data == {"error": "No Robot found with the name Rob"}

        _, data, _ = _call(tls, f"{base}/robots/Ultron/devices/nope")
        assert data == {"error": "No device found with the name nope."}

        _, data, _ = _call(tls, f"{base}/robots/Ultron/connections/nope")
        assert data == {"error": "No connection found with the name nope."}

        _, data, _ = _call(tls, f"{base}/robots/Ultron/devices/nope/events/ping")
        assert data == {"error": "No device found with the name nope."}

        status, data, _ = _call(tls, f"{base}/widgets")
        assert status == 404
        assert data == {"error": "unknown endpoint"}
    finally:
        master.stop_api()


def test_api_invokes_device_and_robot_commands(tls: dict[str, Any]) -> None:
    master = _build_master(tls)
    base = master.start_api().url
    device = master.find_robot_device("Ultron", "arm")
    try:
        _, data, _ = _call(tls, f"{base}/robots/Ultron/devices/ping/commands/ping")
        assert data == {"result": "pong"}

        _, data, _ = _call(tls, f"{base}/robots/Ultron/devices/arm/commands/echo?x=1&y=two")
        assert data == {"result": device.echo("1", "two")}

        _, data, _ = _call(
            tls,
            f"{base}/robots/Ultron/devices/arm/commands/echo",
            method="POST",
            payload={"speed": 10, "heading": 90},
        )
        assert data == {"result": [10, 90]}

        _, data, _ = _call(
            tls,
            f"{base}/robots/Ultron/devices/arm/commands/echo?only=query",
            method="POST",
            payload={"ignored": True},
        )
        assert data == {"result": ["query"]}

        _, data, _ = _call(tls, f"{base}/robots/Ultron/commands/hello", method="POST", payload={"who": "Tony"})
        assert data == {"result": "hello Tony"}

        _, data, _ = _call(tls, f"{base}/robots/Ultron/commands/ping")
        assert data == {"result": "pong"}
    finally:
        master.stop_api()


def test_api_invocation_failures_do_not_crash_server(tls: dict[str, Any]) -> None:
    master = _build_master(tls)
    base = master.start_api().url
    try:
        status, data, _ = _call(tls, f"{base}/robots/Ultron/devices/ping/commands/fly")
        assert status == 200
        assert "fly" in data["error"]

        _, data, _ = _call(tls, f"{base}/robots/Ultron/devices/arm/commands/explode")
        assert "servo jammed" in data["error"]

        _, data, _ = _call(tls, f"{base}/robots/Ultron/commands/fly")
        assert "fly" in data["error"]

        status, data, _ = _call(tls, f"{base}/robots/Ultron/devices/ping/commands/ping")
        assert status == 200
        assert data == {"result": "pong"}
    finally:
        master.stop_api()


def test_api_basic_auth_gate(tls: dict[str, Any]) -> None:
    master = _build_master(tls, auth={"type": "basic", "user": "tony", "pass": "stark"}, CORS="https://ui.local")
    base = master.start_api().url
    good = base64.b64encode(b"tony:stark").decode("ascii")
    bad = base64.b64encode(b"tony:nope").decode("ascii")
    try:
        status, data, headers = _call(tls, f"{base}/robots")
        assert status == 401
        assert data == {"error": "unauthorized"}
        assert headers["WWW-Authenticate"].startswith("Basic")

        status, _, _ = _call(tls, f"{base}/robots", headers={"Authorization": f"Basic {bad}"})
        assert status == 401

        status, data, headers = _call(tls, f"{base}/robots", headers={"Authorization": f"Basic {good}"})
        assert status == 200
        assert data[0]["name"] == "Ultron"
        assert headers["Access-Control-Allow-Origin"] == "https://ui.local"
    finally:
        master.stop_api()


def _open_stream(tls: dict[str, Any], port: int, path: str) -> tuple[ssl.SSLSocket, bytes]:
    raw = socket.create_connection(("127.0.0.1", port), timeout=5)
    sock = tls["client"].wrap_socket(raw, server_hostname="127.0.0.1")
    sock.sendall(f"GET {path} HTTP/1.1\r\nHost: 127.0.0.1\r\nAccept: text/event-stream\r\n\r\n".encode())
    buf = b""
    while b"\r\n\r\n" not in buf:
        chunk = sock.recv(4096)
        if not chunk:
            break
        buf += chunk
    head, _, rest = buf.partition(b"\r\n\r\n")
    assert b" 200 " in head.split(b"\r\n", 1)[0]
    assert b"text/event-stream" in head
    return sock, rest


def _read_data_frame(sock: ssl.SSLSocket, buf: bytes) -> tuple[Any, bytes]:
    while True:
        while b"\n\n" in buf:
            frame, _, buf = buf.partition(b"\n\n")
            if frame.startswith(b"data: "):
                return json.loads(frame[len(b"data: "):].decode("utf-8")), buf
        chunk = sock.recv(4096)
        if not chunk:
            raise AssertionError("stream closed before a data frame arrived")
        buf += chunk


def test_api_event_stream_delivers_and_cleans_up(tls: dict[str, Any]) -> None:
    master = _build_master(tls)
    server = master.start_api()
    device = master.find_robot_device("Ultron", "ping")
    try:
        for _ in range(3):
            sock, buf = _open_stream(tls, server.port, "/robots/Ultron/devices/ping/events/ping")
            try:
                assert _wait_for(lambda: device.events.listener_count("ping") == 1)
                device.ping()
                payload, buf = _read_data_frame(sock, buf)
                assert payload == "ping"
                device.events.publish("ping", {"seq": 2})
                payload, buf = _read_data_frame(sock, buf)
                assert payload == {"seq": 2}
            finally:
                sock.close()
            assert _wait_for(lambda: device.events.listener_count("ping") == 0)
        assert device.events.listener_count() == 0
    finally:
        master.stop_api()


def test_api_stop_releases_open_streams(tls: dict[str, Any]) -> None:
    master = _build_master(tls)
    server = master.start_api()
    device = master.find_robot_device("Ultron", "ping")
    sock, _ = _open_stream(tls, server.port, "/robots/Ultron/devices/ping/events/ping")
    try:
        assert _wait_for(lambda: device.events.listener_count("ping") == 1)
        master.stop_api()
        assert _wait_for(lambda: device.events.listener_count("ping") == 0)
    finally:
        sock.close()


def test_event_stream_released_when_client_closes_between_heartbeats(tls: dict[str, Any]) -> None:
    master = _build_master(tls, sse_heartbeat_seconds=15.0)
    server = master.start_api()
    device = master.find_robot_device("Ultron", "ping")
    try:
        sock, _ = _open_stream(tls, server.port, "/robots/Ultron/devices/ping/events/ping")
        try:
            assert _wait_for(lambda: device.events.listener_count("ping") == 1)
        finally:
            sock.close()
        assert _wait_for(lambda: device.events.listener_count("ping") == 0, timeout=2.0)
    finally:
        master.stop_api()


def test_get_body_is_drained_and_head_has_no_body(tls: dict[str, Any]) -> None:
    master = _build_master(tls)
    server = master.start_api()
    conn = http.client.HTTPSConnection("127.0.0.1", server.port, context=tls["client"], timeout=5)
    try:
        conn.request(
            "GET",
            "/robots/Ultron/commands",
            body=b'{"stray": true}',
            headers={"Content-Type": "application/json"},
        )
        resp = conn.getresponse()
        assert resp.status == 200
        assert json.loads(resp.read().decode("utf-8")) == master.find_robot("Ultron").commands

        conn.request("HEAD", "/robots/Ultron")
        resp = conn.getresponse()
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("application/json")
        assert resp.read() == b""

        conn.request("GET", "/robots/Ultron/devices/ping/commands/ping")
        resp = conn.getresponse()
        assert json.loads(resp.read().decode("utf-8")) == {"result": "pong"}
    finally:
        conn.close()
        master.stop_api()


def test_options_preflight_returns_cors_headers(tls: dict[str, Any]) -> None:
    master = _build_master(tls)
    base = master.start_api().url
    try:
        req = request.Request(f"{base}/robots/Ultron/commands/ping", method="OPTIONS")
        with request.urlopen(req, timeout=5, context=tls["client"]) as resp:
            assert resp.status == 204
            assert resp.headers["Access-Control-Allow-Origin"] == "*"
    finally:
        master.stop_api()
