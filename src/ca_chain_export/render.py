from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from .errors import WriteError
from .models import Certificate, ClassifiedCertificate, ExtractionResult, Role, Target
from .utils import dt_to_utc_iso

logger = logging.getLogger(__name__)

LEAF_FILENAME = "leaf_certificate.pem"
CA_FILENAME = "ca_certificate_{ordinal}.pem"


def ensure_output_dir(path: str | Path) -> Path:
    out = Path(path)
    try:
        out.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WriteError(f"cannot create output directory {out}: {e}") from e
    return out


def classify_chain(certs: Sequence[Certificate]) -> list[ClassifiedCertificate]:
    """
    Assign roles by position only: the first certificate is the leaf, every
    later one is a CA candidate. Issuance order is not checked, so a server
    that sends its chain out of order gets misclassified.
    """
    if not certs:
        raise ValueError("certificate chain is empty")

    out = [ClassifiedCertificate(certificate=certs[0], role=Role.LEAF, filename=LEAF_FILENAME)]
    for ordinal, cert in enumerate(certs[1:]):
        out.append(
            ClassifiedCertificate(
                certificate=cert,
                role=Role.CERTIFICATE_AUTHORITY,
                filename=CA_FILENAME.format(ordinal=ordinal),
                ca_ordinal=ordinal,
            )
        )
    return out


def write_chain(classified: Iterable[ClassifiedCertificate], output_dir: str | Path) -> list[Path]:
    """
    Write one PEM file per certificate. Stops at the first failure; files
    written before it are left in place.
    """
    written: list[Path] = []
    for cc in classified:
        path = Path(output_dir) / cc.filename
        try:
            path.write_text(cc.pem, encoding="ascii")
        except OSError as e:
            raise WriteError(
                f"cannot write {path} ({len(written)} file(s) already written): {e}"
            ) from e
        logger.debug("wrote %s (%s)", path, cc.role.value)
        written.append(path)
    return written


def render_chain(
    url: str,
    target: Target,
    certs: Sequence[Certificate],
    output_dir: str | Path,
    *,
    now: datetime | None = None,
) -> ExtractionResult:
    classified = classify_chain(certs)
    write_chain(classified, output_dir)
    return ExtractionResult(
        url=url,
        target=target,
        timestamp=dt_to_utc_iso(now or datetime.now(timezone.utc)),
        certificates=tuple(classified),
    )
