from __future__ import annotations

import logging
import select
import socket
import time
from typing import Callable

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from OpenSSL import SSL, crypto

from .errors import HandshakeError, HostConnectionError
from .models import Certificate, Target
from .utils import dt_to_utc_iso, sha256_hex

logger = logging.getLogger(__name__)

# (connection, certificate, errno, depth, preverify_ok) -> accept?
VerifyCallback = Callable[[SSL.Connection, crypto.X509, int, int, int], bool]


def accept_any_certificate(
    conn: SSL.Connection, cert: crypto.X509, errno: int, depth: int, preverify_ok: int
) -> bool:
    """
    Verification policy that trusts every certificate the peer sends.

    UNSAFE. It exists so that self-signed or otherwise untrusted chains can be
    captured for inspection during a single interactive run. Never install it
    on a connection that carries data or outlives the diagnostic.
    """
    if not preverify_ok:
        logger.debug("ignoring verification error %d at depth %d", errno, depth)
    return True


def _name_to_str(name: x509.Name) -> str:
    # RFC4514
    try:
        return name.rfc4514_string()
    except ValueError:
        return str(name)


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        return False
    return bool(bc.ca)


def parse_certificate(der: bytes, index: int) -> Certificate:
    c = x509.load_der_x509_certificate(der)
    return Certificate(
        der=der,
        subject=_name_to_str(c.subject),
        issuer=_name_to_str(c.issuer),
        index=index,
        sha256=sha256_hex(der),
        serial_number=hex(c.serial_number),
        not_before=dt_to_utc_iso(c.not_valid_before_utc),
        not_after=dt_to_utc_iso(c.not_valid_after_utc),
        is_ca=_is_ca(c),
        self_signed=c.subject == c.issuer,
    )


def _handshake(conn: SSL.Connection, sock: socket.socket, timeout_seconds: float) -> None:
    deadline = time.monotonic() + timeout_seconds
    while True:
        try:
            conn.do_handshake()
            return
        except SSL.WantReadError:
            wait_read, wait_write = [sock], []
        except SSL.WantWriteError:
            wait_read, wait_write = [], [sock]
        remaining = deadline - time.monotonic()
        if remaining <= 0 or not any(select.select(wait_read, wait_write, [], remaining)):
            raise HandshakeError(f"no TLS response within {timeout_seconds:g}s")


def _shutdown(conn: SSL.Connection) -> None:
    try:
        conn.shutdown()
    except SSL.Error as e:
        # close_notify is best effort, the socket is closed regardless
        logger.debug("TLS shutdown incomplete: %r", e)


def fetch_chain(
    target: Target,
    *,
    timeout_seconds: float = 10.0,
    verify_callback: VerifyCallback = accept_any_certificate,
) -> list[Certificate]:
    """
    Fetch the chain the server presents during the handshake, leaf first, in
    the order it was sent. Missing intermediates are not looked up elsewhere.

    `verify_callback` decides whether each certificate is acceptable; the
    default accepts everything (see `accept_any_certificate`).

    `timeout_seconds` bounds the TCP connect and, separately, the handshake.
    The DNS lookup done by `socket.create_connection` is not covered by it:
    a failed lookup still raises HostConnectionError, but how long it takes
    is up to the system resolver's own timeout and retry settings.
    """
    ctx = SSL.Context(SSL.TLS_CLIENT_METHOD)
    ctx.set_verify(SSL.VERIFY_PEER, verify_callback)

    logger.debug("connecting to %s (timeout %gs)", target, timeout_seconds)
    try:
        sock = socket.create_connection((target.host, target.port), timeout=timeout_seconds)
    except socket.gaierror as e:
        raise HostConnectionError(f"cannot resolve {target.host}: {e}") from e
    except TimeoutError as e:
        raise HostConnectionError(f"timed out connecting to {target} after {timeout_seconds:g}s") from e
    except OSError as e:
        raise HostConnectionError(f"cannot connect to {target}: {e}") from e

    with sock:
        sock.setblocking(False)
        conn = SSL.Connection(ctx, sock)
        if target.sni:
            conn.set_tlsext_host_name(target.sni.encode("ascii"))
        conn.set_connect_state()
        try:
            _handshake(conn, sock, timeout_seconds)
        except SSL.Error as e:
            raise HandshakeError(f"handshake with {target} rejected: {e!r}") from e
        except OSError as e:
            raise HandshakeError(f"connection to {target} reset during handshake: {e}") from e

        try:
            logger.debug("negotiated %s %s", conn.get_protocol_version_name(), conn.get_cipher_name())
            peer_chain = conn.get_peer_cert_chain()
        finally:
            _shutdown(conn)

    if not peer_chain:
        raise HandshakeError(f"{target} presented no certificate")

    ders = [c.to_cryptography().public_bytes(serialization.Encoding.DER) for c in peer_chain]
    logger.debug("peer sent %d certificate(s)", len(ders))
    return [parse_certificate(der, i) for i, der in enumerate(ders)]
