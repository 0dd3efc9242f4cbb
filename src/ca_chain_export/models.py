from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .utils import fingerprint


class Role(str, Enum):
    LEAF = "Leaf"
    CERTIFICATE_AUTHORITY = "CertificateAuthority"


@dataclass(frozen=True)
class Target:
    host: str
    port: int
    sni: str | None

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Certificate:
    """
    One certificate exactly as the peer sent it.
    """
    der: bytes = field(repr=False)
    subject: str
    issuer: str
    index: int
    sha256: str
    serial_number: str
    not_before: str  # ISO-8601 UTC string
    not_after: str   # ISO-8601 UTC string
    is_ca: bool = False
    self_signed: bool = False

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.der)


@dataclass(frozen=True)
class ClassifiedCertificate:
    """
    Certificate plus the role derived from its position in the chain.
    """
    certificate: Certificate
    role: Role
    filename: str
    ca_ordinal: int | None = None

    @property
    def install(self) -> bool:
        return self.role is Role.CERTIFICATE_AUTHORITY

    @property
    def pem(self) -> str:
        der = self.certificate.der
        return x509.load_der_x509_certificate(der).public_bytes(serialization.Encoding.PEM).decode("ascii")

    def to_dict(self) -> dict[str, Any]:
        c = self.certificate
        return {
            "index": c.index,
            "role": self.role.value,
            "filename": self.filename,
            "install": self.install,
            "subject": c.subject,
            "issuer": c.issuer,
            "sha256": c.sha256,
            "serial_number": c.serial_number,
            "not_before": c.not_before,
            "not_after": c.not_after,
            "is_ca": c.is_ca,
            "self_signed": c.self_signed,
        }


@dataclass(frozen=True)
class ExtractionResult:
    """
    Everything one run produced: leaf first, then CAs in the order served.
    """
    url: str
    target: Target
    timestamp: str
    certificates: tuple[ClassifiedCertificate, ...]

    @property
    def leaf(self) -> ClassifiedCertificate:
        return self.certificates[0]

    @property
    def ca_certificates(self) -> list[ClassifiedCertificate]:
        return [c for c in self.certificates if c.install]

    @property
    def total(self) -> int:
        return len(self.certificates)

    @property
    def ca_count(self) -> int:
        return len(self.ca_certificates)

    @property
    def leaf_count(self) -> int:
        return self.total - self.ca_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "target": {"host": self.target.host, "port": self.target.port, "sni": self.target.sni},
            "timestamp": self.timestamp,
            "counts": {"total": self.total, "ca": self.ca_count, "leaf": self.leaf_count},
            "certificates": [c.to_dict() for c in self.certificates],
        }
