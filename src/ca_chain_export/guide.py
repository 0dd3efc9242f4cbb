from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import Callable

from .errors import WriteError
from .models import ClassifiedCertificate, ExtractionResult

logger = logging.getLogger(__name__)

GUIDE_FILENAME = "CA_INSTALLATION_GUIDE.md"

GUIDE = Template("""\
# CA Certificate Installation Guide

- **Server:** $url
- **Generated:** $timestamp
- **Certificates in chain:** $total ($ca_count CA, $leaf_count leaf)

## Certificates

| # | Role | File | Subject | Issuer |
|---|------|------|---------|--------|
$table

$details
$install
""")

DETAIL = Template("""\
### $filename

- Role: $role
- Subject: `$subject`
- Issuer: `$issuer`
- SHA-256: `$fingerprint`
- Valid: $not_before to $not_after
- Install on client: $install
""")

NO_CA = Template("""\
## Installation

The server presented only its own certificate ($leaf_file), so there is no
CA certificate in the chain. No CA installation is required.
""")

INSTALL = Template("""\
## Files to transfer

Copy these files to the $platform machine, in this order:

$transfer

The leaf certificate ($leaf_file) identifies the server itself and must not
be installed as trusted.

## Installation ($store)

$steps

## Command-line alternative

```
$commands
```

Restart the browser or application afterwards so it picks up the new trust
settings.
""")


@dataclass(frozen=True)
class Platform:
    name: str
    store: str
    steps: Template
    # (certificate, is the CA closest to the root) -> command line
    command: Callable[[ClassifiedCertificate, bool], str]
    footer: str = ""


def _macos_command(cc: ClassifiedCertificate, anchor: bool) -> str:
    trust = "trustRoot" if cc.certificate.self_signed else "trustAsRoot"
    return f"sudo security add-trusted-cert -d -r {trust} -k /Library/Keychains/System.keychain {cc.filename}"


def _windows_command(cc: ClassifiedCertificate, anchor: bool) -> str:
    # only the Root store makes a trust anchor, the CA store just supplies intermediates
    store = "Root" if anchor or cc.certificate.self_signed else "CA"
    return f"certutil -addstore -f {store} {cc.filename}"


def _linux_command(cc: ClassifiedCertificate, anchor: bool) -> str:
    return f"sudo cp {cc.filename} /usr/local/share/ca-certificates/{Path(cc.filename).stem}.crt"


PLATFORMS: dict[str, Platform] = {
    "macos": Platform(
        name="macOS",
        store="Keychain Access, System keychain",
        steps=Template("""\
For each file, in order ($files):

1. Double-click the file. Keychain Access opens.
2. Choose the **System** keychain and click **Add**; authenticate if asked.
3. Find the certificate under **System > Certificates** and double-click it.
4. Expand **Trust** and set **When using this certificate** to **Always Trust**.
5. Close the window and authenticate to save the change."""),
        command=_macos_command,
    ),
    "windows": Platform(
        name="Windows",
        store="Local Computer certificate store",
        steps=Template("""\
For each file, in order ($files):

1. Rename the file to end in `.crt` if Windows does not recognise it, then double-click it.
2. Click **Install Certificate...**, choose **Local Machine** and continue.
3. Select **Place all certificates in the following store** and browse to
   **Trusted Root Certification Authorities** for $anchor and any
   self-signed file, or **Intermediate Certification Authorities** for the
   others.
4. Finish the wizard and confirm the security warning."""),
        command=_windows_command,
    ),
    "linux": Platform(
        name="Linux",
        store="system CA bundle",
        steps=Template("""\
1. Copy each file ($files) to `/usr/local/share/ca-certificates/`, renaming
   the extension from `.pem` to `.crt`.
2. Run `sudo update-ca-certificates` to rebuild the system bundle.
3. Check that the certificates appear in `/etc/ssl/certs/ca-certificates.crt`."""),
        command=_linux_command,
        footer="sudo update-ca-certificates",
    ),
}


def _cell(text: str) -> str:
    return text.replace("|", "\\|")


def _row(cc: ClassifiedCertificate) -> str:
    c = cc.certificate
    return f"| {c.index} | {cc.role.value} | `{cc.filename}` | {_cell(c.subject)} | {_cell(c.issuer)} |"


def _detail(cc: ClassifiedCertificate) -> str:
    c = cc.certificate
    return DETAIL.substitute(
        filename=cc.filename,
        role=cc.role.value,
        subject=c.subject,
        issuer=c.issuer,
        fingerprint=c.fingerprint,
        not_before=c.not_before,
        not_after=c.not_after,
        install="yes" if cc.install else "no",
    )


def render_guide(result: ExtractionResult, platform: str = "macos") -> str:
    try:
        p = PLATFORMS[platform]
    except KeyError:
        raise ValueError(f"unknown platform {platform!r} (choose from {', '.join(PLATFORMS)})") from None

    cas = result.ca_certificates
    if not cas:
        install = NO_CA.substitute(leaf_file=result.leaf.filename)
    else:
        anchor = cas[-1]
        commands = [p.command(cc, cc is anchor) for cc in cas]
        if p.footer:
            commands.append(p.footer)
        install = INSTALL.substitute(
            platform=p.name,
            store=p.store,
            transfer="\n".join(f"{i}. `{cc.filename}`" for i, cc in enumerate(cas, 1)),
            leaf_file=result.leaf.filename,
            steps=p.steps.substitute(
                files=", ".join(f"`{cc.filename}`" for cc in cas),
                anchor=f"`{anchor.filename}`",
            ),
            commands="\n".join(commands),
        )

    return GUIDE.substitute(
        url=result.url,
        timestamp=result.timestamp,
        total=result.total,
        ca_count=result.ca_count,
        leaf_count=result.leaf_count,
        table="\n".join(_row(cc) for cc in result.certificates),
        details="\n".join(_detail(cc) for cc in result.certificates),
        install=install,
    )


def write_guide(result: ExtractionResult, output_dir: str | Path, platform: str = "macos") -> Path:
    text = render_guide(result, platform)
    path = Path(output_dir) / GUIDE_FILENAME
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise WriteError(f"cannot write {path}: {e}") from e
    logger.debug("wrote %s", path)
    return path
