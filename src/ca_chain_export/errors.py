from __future__ import annotations


class CertExportError(Exception):
    """
    Base for every failure that ends a run. `stage` names the step that failed.
    """
    stage = "run"

    def __str__(self) -> str:
        return f"{self.stage} failed: {super().__str__()}"


class InputError(CertExportError, ValueError):
    stage = "input"


class HostConnectionError(CertExportError, ConnectionError):
    stage = "connection"


class HandshakeError(CertExportError):
    stage = "TLS handshake"


class WriteError(CertExportError):
    stage = "write"
