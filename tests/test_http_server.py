import asyncio
import datetime
import socket

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from tlsnode.context_builder import ContextBuilder
from tlsnode.context_config import CertConfig, ContextConfig
from tlsnode.http_server import HttpServer, HttpServerFactory
from tlsnode.http_stream import HttpStreamFactory
from tlsnode.node_info import certificate_pub_hex


async def _read_response(reader):
    head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), 5)
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        if line:
            name, _, value = line.partition(":")
            headers[name.strip().lower()] = value.strip()
    body = await reader.readexactly(int(headers.get("content-length", "0")))
    return status, headers, body


def _post(body: bytes) -> bytes:
    return (
        b"POST / HTTP/1.1\r\nHost: localhost\r\nContent-Length: "
        + str(len(body)).encode()
        + b"\r\n\r\n"
        + body
    )


UPGRADE = (
    b"GET /ws HTTP/1.1\r\nHost: localhost\r\nConnection: Upgrade\r\n"
    b"Upgrade: websocket\r\nSec-WebSocket-Version: 13\r\n"
    b"Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==\r\n\r\n"
)


def _echo_upper(body, respond):
    respond(body.upper().encode())


async def _plain_server(handler=None, ws=None):
    server = HttpServer("127.0.0.1", 0, "TEST")
    server.disable_ssl = True
    server.request_handler = handler
    server.ws_upgrade_handler = ws
    await server.start()
    return server


async def _shutdown(server, writer=None):
    if writer is not None:
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), 5)
        except (OSError, asyncio.TimeoutError):
            pass
    server.stop()
    await asyncio.wait_for(server.wait_closed(), 5)


@pytest.mark.asyncio
async def test_plain_request_is_answered():
    server = await _plain_server(_echo_upper)
    reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
    writer.write(_post(b"hello"))
    await writer.drain()
    status, headers, body = await _read_response(reader)
    await _shutdown(server, writer)
    assert status == 200
    assert body == b"HELLO"
    assert headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_missing_handler_answers_505():
    server = await _plain_server()
    reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
    writer.write(_post(b"x"))
    await writer.drain()
    status, _, body = await _read_response(reader)
    await _shutdown(server, writer)
    assert status == 505
    assert body == b""


@pytest.mark.asyncio
async def test_pipelined_requests_answered_in_order():
    server = await _plain_server(_echo_upper)
    reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
    writer.write(_post(b"first") + _post(b"second"))
    await writer.drain()
    first = await _read_response(reader)
    second = await _read_response(reader)
    await _shutdown(server, writer)
    assert first[2] == b"FIRST"
    assert second[2] == b"SECOND"


@pytest.mark.asyncio
async def test_start_twice_keeps_listening_port():
    server = await _plain_server(_echo_upper)
    port = server.bound_port
    await server.start()
    assert server.is_running
    assert server.bound_port == port
    await _shutdown(server)


@pytest.mark.asyncio
async def test_stop_refuses_new_connections():
    server = await _plain_server(_echo_upper)
    port = server.bound_port
    await _shutdown(server)
    assert not server.is_running
    with pytest.raises(OSError):
        await asyncio.open_connection("127.0.0.1", port)


@pytest.mark.asyncio
async def test_invalid_listen_ip_raises():
    server = HttpServer("not-an-ip", 0)
    server.disable_ssl = True
    with pytest.raises(ValueError):
        await server.start()


@pytest.mark.asyncio
async def test_ssl_without_context_raises():
    server = HttpServer("127.0.0.1", 0)
    with pytest.raises(RuntimeError):
        await server.start()
    assert not server.is_running


@pytest.mark.asyncio
async def test_port_in_use_raises():
    occupied = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        occupied.bind(("127.0.0.1", 0))
        occupied.listen()
        server = HttpServer("127.0.0.1", occupied.getsockname()[1])
        server.disable_ssl = True
        with pytest.raises(RuntimeError):
            await server.start()
    finally:
        occupied.close()


@pytest.mark.asyncio
async def test_build_http_session_wires_handlers():
    def upgrade(stream, request, node_id):
        stream.close()

    server = HttpServer("127.0.0.1", 0, "SRV")
    server.request_handler = _echo_upper
    server.ws_upgrade_handler = upgrade
    stream = HttpStreamFactory().build_http_stream(asyncio.StreamReader(), object(), "MOD")
    session = server.build_http_session(stream, "abc")
    assert session.module_name == "MOD"
    assert session.http_stream is stream
    assert session.request_handler is _echo_upper
    assert session.ws_upgrade_handler is upgrade
    assert session.node_id == "abc"


def test_factory_builds_server_with_context():
    marker = object()
    server = HttpServerFactory().build_http_server("127.0.0.1", 8545, marker, "RPC")
    assert server.ssl_context is marker
    assert server.listen_ip == "127.0.0.1"
    assert server.listen_port == 8545
    assert server.module_name == "RPC"
    assert server.disable_ssl is False


@pytest.mark.asyncio
async def test_plain_websocket_upgrade_passes_request():
    received = asyncio.get_running_loop().create_future()

    def upgrade(stream, request, node_id):
        received.set_result((request.target, node_id))
        stream.close()

    server = await _plain_server(_echo_upper, upgrade)
    assert server.is_running
    reader, writer = await asyncio.open_connection("127.0.0.1", server.bound_port)
    writer.write(UPGRADE)
    await writer.drain()
    target, node_id = await asyncio.wait_for(received, 5)
    assert server.is_running
    await _shutdown(server, writer)
    assert not server.is_running
    assert target == "/ws"
    assert node_id is None


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _make_cert(subject_key, subject, issuer_key, issuer, ca):
    now = datetime.datetime.now(datetime.timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(_name(subject))
        .issuer_name(_name(issuer))
        .public_key(subject_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(subject_key.public_key()), critical=False
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(issuer_key.public_key()),
            critical=False,
        )
        .sign(issuer_key, hashes.SHA256())
    )


def _write_pair(directory, name, cert, key):
    cert_path = directory / f"{name}.crt"
    key_path = directory / f"{name}.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return str(cert_path), str(key_path)


@pytest.fixture
def tls_material(tmp_path):
    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_cert = _make_cert(ca_key, "test-ca", ca_key, "test-ca", True)
    ca_path = tmp_path / "ca.crt"
    ca_path.write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))

    server_key = ec.generate_private_key(ec.SECP256R1())
    server_cert = _make_cert(server_key, "server", ca_key, "test-ca", False)
    client_key = ec.generate_private_key(ec.SECP256R1())
    client_cert = _make_cert(client_key, "client", ca_key, "test-ca", False)

    builder = ContextBuilder()

    def context(server, name, cert, key):
        cert_path, key_path = _write_pair(tmp_path, name, cert, key)
        config = ContextConfig(
            ssl_type="ssl",
            cert_config=CertConfig(ca_cert=str(ca_path), node_key=key_path, node_cert=cert_path),
        )
        return builder.build_ssl_context(server, config)

    return (
        context(True, "server", server_cert, server_key),
        context(False, "client", client_cert, client_key),
        client_cert,
    )


@pytest.mark.asyncio
async def test_tls_request_is_answered(tls_material):
    server_ctx, client_ctx, _ = tls_material
    server = HttpServerFactory().build_http_server("127.0.0.1", 0, server_ctx, "TLS")
    server.request_handler = _echo_upper
    await server.start()
    reader, writer = await asyncio.open_connection(
        "127.0.0.1", server.bound_port, ssl=client_ctx
    )
    writer.write(_post(b"secure"))
    await writer.drain()
    status, _, body = await _read_response(reader)
    await _shutdown(server, writer)
    assert status == 200
    assert body == b"SECURE"


@pytest.mark.asyncio
async def test_tls_upgrade_carries_peer_node_id(tls_material):
    server_ctx, client_ctx, client_cert = tls_material
    received = asyncio.get_running_loop().create_future()

    def upgrade(stream, request, node_id):
        received.set_result(node_id)
        stream.close()

    server = HttpServerFactory().build_http_server("127.0.0.1", 0, server_ctx, "TLS")
    server.ws_upgrade_handler = upgrade
    await server.start()
    reader, writer = await asyncio.open_connection(
        "127.0.0.1", server.bound_port, ssl=client_ctx
    )
    writer.write(UPGRADE)
    await writer.drain()
    node_id = await asyncio.wait_for(received, 5)
    await _shutdown(server, writer)
    assert node_id == certificate_pub_hex(client_cert)