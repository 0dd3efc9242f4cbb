from __future__ import annotations

import socket
import ssl
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ca_chain_export.fetch import parse_certificate
from ca_chain_export.models import Certificate


def _name(cn: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Corp"),
            x509.NameAttribute(NameOID.COMMON_NAME, cn),
        ]
    )


def _issue(cn, key, *, issuer=None, issuer_key=None, ca=False, san=None) -> x509.Certificate:
    now = datetime.now(timezone.utc)
    subject = _name(cn)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.subject if issuer is not None else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    if san:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(n) for n in san]), critical=False
        )
    return builder.sign(issuer_key or key, hashes.SHA256())


@dataclass
class Pki:
    root: x509.Certificate
    intermediate: x509.Certificate
    leaf: x509.Certificate
    leaf_key: ec.EllipticCurvePrivateKey
    self_signed: x509.Certificate
    self_signed_key: ec.EllipticCurvePrivateKey

    @property
    def chain(self) -> list[x509.Certificate]:
        return [self.leaf, self.intermediate, self.root]

    @property
    def ders(self) -> list[bytes]:
        return [c.public_bytes(serialization.Encoding.DER) for c in self.chain]


@pytest.fixture(scope="session")
def pki() -> Pki:
    root_key = ec.generate_private_key(ec.SECP256R1())
    root = _issue("Example Root CA", root_key, ca=True)
    inter_key = ec.generate_private_key(ec.SECP256R1())
    intermediate = _issue("Example Issuing CA", inter_key, issuer=root, issuer_key=root_key, ca=True)
    leaf_key = ec.generate_private_key(ec.SECP256R1())
    leaf = _issue(
        "internal.example.com",
        leaf_key,
        issuer=intermediate,
        issuer_key=inter_key,
        san=["internal.example.com", "localhost"],
    )
    ss_key = ec.generate_private_key(ec.SECP256R1())
    self_signed = _issue("selfsigned.example.com", ss_key, san=["selfsigned.example.com"])
    return Pki(root, intermediate, leaf, leaf_key, self_signed, ss_key)


@pytest.fixture
def chain_certs(pki) -> list[Certificate]:
    return [parse_certificate(der, i) for i, der in enumerate(pki.ders)]


@pytest.fixture
def self_signed_cert(pki) -> Certificate:
    return parse_certificate(pki.self_signed.public_bytes(serialization.Encoding.DER), 0)


class OneShotServer(threading.Thread):
    """
    Accepts a single connection on 127.0.0.1 and hands it to `handler`.
    """

    def __init__(self, handler: Callable[[socket.socket], None]):
        super().__init__(daemon=True)
        self.handler = handler
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(1)
        self.listener.settimeout(10)
        self.port = self.listener.getsockname()[1]

    def run(self) -> None:
        try:
            conn, _ = self.listener.accept()
        except OSError:
            return
        with conn:
            conn.settimeout(10)
            try:
                self.handler(conn)
            except (ssl.SSLError, OSError):
                pass

    def stop(self) -> None:
        self.listener.close()
        self.join(timeout=10)


@pytest.fixture
def serve():
    servers: list[OneShotServer] = []

    def _serve(handler: Callable[[socket.socket], None]) -> int:
        server = OneShotServer(handler)
        server.start()
        servers.append(server)
        return server.port

    yield _serve
    for server in servers:
        server.stop()


@pytest.fixture
def tls_context(pki, tmp_path: Path):
    """
    Server context presenting leaf + intermediate + root.
    """
    chain_file = tmp_path / "server_chain.pem"
    key_file = tmp_path / "server_key.pem"
    chain_file.write_bytes(b"".join(c.public_bytes(serialization.Encoding.PEM) for c in pki.chain))
    key_file.write_bytes(
        pki.leaf_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    ctx.load_cert_chain(certfile=str(chain_file), keyfile=str(key_file))
    return ctx
