import datetime
import ipaddress
import socket
import ssl
import threading

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from websockets.utils import accept_key

from wstunnel.config.builder import build_tunnel_config
from wstunnel.config.models import TunnelSettings

PROXY_VARS = (
    "HTTP_PROXY", "http_proxy", "HTTPS_PROXY", "https_proxy",
    "ALL_PROXY", "all_proxy", "NO_PROXY", "no_proxy",
    "REQUEST_METHOD",
)


SETTINGS_VARS = tuple(
    f"WSTUNNEL_{name}" for name in
    ("CERTS_DIR", "SERVER_NAME", "TARGET_HOST", "PORT", "LISTEN_ADDR", "LOG_LEVEL", "LOG_FILE")
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    # setenv first so that values loaded from .env files are undone too
    for var in PROXY_VARS + SETTINGS_VARS:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


class ServerThread:
    """Accepts connections on 127.0.0.1 and runs ``handler(conn)`` in a thread for each."""

    def __init__(self, handler, ssl_context=None):
        self.handler = handler
        self.ssl_context = ssl_context
        self.requests = []
        self.sock = socket.create_server(("127.0.0.1", 0))
        self.port = self.sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    @property
    def address(self):
        return f"127.0.0.1:{self.port}"

    def _serve(self):
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn):
        try:
            if self.ssl_context is not None:
                conn = self.ssl_context.wrap_socket(conn, server_side=True)
            self.handler(self, conn)
        except OSError:
            pass
        finally:
            conn.close()

    def close(self):
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()


def read_head(conn):
    head = b""
    while b"\r\n\r\n" not in head:
        chunk = conn.recv(1)
        if not chunk:
            return None
        head += chunk
    return head


def parse_head(head):
    lines = head.decode("latin-1").split("\r\n")
    headers = {}
    for line in lines[1:]:
        if ":" in line:
            name, value = line.split(":", 1)
            headers[name.strip().lower()] = value.strip()
    return lines[0], headers


def echo(conn):
    while True:
        data = conn.recv(65536)
        if not data:
            break
        conn.sendall(data)


def echo_handler(server, conn):
    echo(conn)
    if not isinstance(conn, ssl.SSLSocket):
        conn.shutdown(socket.SHUT_WR)


def accept_upgrade(server, conn, early=b""):
    """Answer a WebSocket upgrade request; returns False if the client went away."""
    head = read_head(conn)
    if head is None:
        return False
    request_line, headers = parse_head(head)
    server.requests.append((request_line, headers))

    response = (
        "HTTP/1.1 101 Switching Protocols\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Accept: {accept_key(headers['sec-websocket-key'])}\r\n"
        "\r\n"
    ).encode("latin-1")
    conn.sendall(response + early)
    return True


def websocket_echo_handler(server, conn, early=b""):
    if accept_upgrade(server, conn, early):
        echo_handler(server, conn)


def recv_exact(conn, size):
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            raise ConnectionError("client went away")
        data += chunk
    return data


def socks5_handler(credentials=None):
    """Minimal SOCKS5 CONNECT server; records (host, port) and echoes the stream."""
    def handler(server, conn):
        _, nmethods = recv_exact(conn, 2)
        methods = recv_exact(conn, nmethods)

        if credentials is None:
            conn.sendall(b"\x05\x00")
        else:
            if 2 not in methods:
                conn.sendall(b"\x05\xff")
                return
            conn.sendall(b"\x05\x02")
            _, ulen = recv_exact(conn, 2)
            username = recv_exact(conn, ulen).decode()
            plen = recv_exact(conn, 1)[0]
            password = recv_exact(conn, plen).decode()
            if (username, password) != credentials:
                conn.sendall(b"\x01\x01")
                return
            conn.sendall(b"\x01\x00")

        _, _, _, atyp = recv_exact(conn, 4)
        if atyp == 1:
            host = socket.inet_ntop(socket.AF_INET, recv_exact(conn, 4))
        elif atyp == 3:
            host = recv_exact(conn, recv_exact(conn, 1)[0]).decode("idna")
        else:
            host = socket.inet_ntop(socket.AF_INET6, recv_exact(conn, 16))
        port = int.from_bytes(recv_exact(conn, 2), "big")
        server.requests.append((host, port))

        conn.sendall(b"\x05\x00\x00\x01" + bytes(4) + bytes(2))
        echo_handler(server, conn)
    return handler


@pytest.fixture
def echo_server():
    server = ServerThread(echo_handler)
    yield server
    server.close()


@pytest.fixture
def ws_echo_server():
    server = ServerThread(websocket_echo_handler)
    yield server
    server.close()


@pytest.fixture
def make_config():
    def _make(target_host, certs_dir="", server_name=""):
        return build_tunnel_config(TunnelSettings(
            target_host=target_host,
            certs_dir=certs_dir,
            server_name=server_name,
            port=0,
        ))
    return _make


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


@pytest.fixture(scope="session")
def tls_material(tmp_path_factory):
    """A throwaway CA (certs_dir/cacert.pem) and a server context for localhost."""
    certs_dir = tmp_path_factory.mktemp("certs")
    now = datetime.datetime.now(datetime.timezone.utc)
    validity = (now - datetime.timedelta(days=1), now + datetime.timedelta(days=30))

    ca_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    ca_ski = x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key())
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("wstunnel test CA"))
        .issuer_name(_name("wstunnel test CA"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(validity[0])
        .not_valid_after(validity[1])
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(x509.KeyUsage(
            digital_signature=True, content_commitment=False, key_encipherment=False,
            data_encipherment=False, key_agreement=False, key_cert_sign=True,
            crl_sign=True, encipher_only=False, decipher_only=False), critical=True)
        .add_extension(ca_ski, critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name("localhost"))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(validity[0])
        .not_valid_after(validity[1])
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.SubjectAlternativeName([
            x509.DNSName("localhost"),
            x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        ]), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ca_ski),
            critical=False)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                       critical=False)
        .sign(ca_key, hashes.SHA256())
    )

    (certs_dir / "cacert.pem").write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))
    (certs_dir / "server.pem").write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    (certs_dir / "server.key").write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ))

    server_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    server_context.load_cert_chain(certs_dir / "server.pem", certs_dir / "server.key")
    return certs_dir, server_context
