from __future__ import annotations

import argparse
import ipaddress
import json
import logging
import sys
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from . import __version__
from .errors import CertExportError, HandshakeError, HostConnectionError, InputError, WriteError
from .fetch import fetch_chain
from .guide import PLATFORMS, write_guide
from .models import Target
from .render import ensure_output_dir, render_chain

logger = logging.getLogger(__name__)

EXIT_CODES: dict[type[CertExportError], int] = {
    InputError: 1,
    HostConnectionError: 3,
    HandshakeError: 4,
    WriteError: 5,
}


def _write_output(out_path: str, payload: Any) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if out_path == "-":
        print(text)
        return
    try:
        Path(out_path).write_text(text + "\n", encoding="utf-8")
    except OSError as e:
        raise WriteError(f"cannot write summary {out_path}: {e}") from e


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="ca-chain-export",
        description=(
            "Download the certificate chain an HTTPS server presents, save every "
            "certificate as PEM and write a guide for trusting its CA certificates."
        ),
    )
    p.add_argument("url", help="Server URL, e.g. https://internal.example.com or https://host:8443")
    p.add_argument(
        "--output-dir",
        "-o",
        default="certificates",
        help="Directory for certificates and guide (default: certificates)",
    )
    p.add_argument("--timeout", type=float, default=10.0, help="Connect/handshake timeout seconds (default: 10)")
    p.add_argument(
        "--platform",
        choices=sorted(PLATFORMS),
        default="macos",
        help="Client OS the installation guide is written for (default: macos)",
    )
    p.add_argument("--summary", metavar="FILE", help="Also write a JSON summary to FILE ('-' for stdout)")
    p.add_argument("--verbose", "-v", action="store_true", help="Log connection details")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p.parse_args(argv)


def parse_url(url: str) -> Target:
    """
    Extract host and port from an https:// URL. Raises InputError before any I/O.
    """
    parts = urlsplit(url.strip())
    if parts.scheme.lower() != "https":
        raise InputError(f"URL must start with https:// (got {url!r})")
    host = parts.hostname
    if not host:
        raise InputError(f"no hostname in {url!r}")
    try:
        port = parts.port
    except ValueError as e:
        raise InputError(f"invalid port in {url!r}") from e
    if port is None:
        port = 443
    elif port == 0:
        raise InputError(f"port 0 is not a connectable port in {url!r}")

    try:
        ipaddress.ip_address(host)
    except ValueError:
        pass
    else:
        # SNI must not carry an IP address
        return Target(host=host, port=port, sni=None)

    try:
        sni = host.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise InputError(f"invalid hostname {host!r}: {e}") from e
    return Target(host=sni, port=port, sni=sni)


def run(args: argparse.Namespace) -> int:
    target = parse_url(args.url)
    out_dir = ensure_output_dir(args.output_dir)

    logger.info("Connecting to %s...", target)
    certs = fetch_chain(target, timeout_seconds=args.timeout)
    logger.info("Server presented %d certificate(s)", len(certs))

    result = render_chain(args.url, target, certs, out_dir)
    for cc in result.certificates:
        logger.info("  [%s] %s -> %s", cc.role.value, cc.certificate.subject, out_dir / cc.filename)

    guide_path = write_guide(result, out_dir, args.platform)
    if args.summary:
        _write_output(args.summary, result.to_dict())

    logger.info("")
    if result.ca_count:
        logger.info("%d CA certificate(s) to install, see %s", result.ca_count, guide_path)
    else:
        logger.info("No CA certificates in chain, nothing to install (details in %s)", guide_path)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    try:
        return run(args)
    except CertExportError as e:
        logger.error("Error: %s", e)
        return EXIT_CODES.get(type(e), 1)


if __name__ == "__main__":
    raise SystemExit(main())
