from datetime import datetime, timedelta, timezone

from ca_chain_export.utils import dt_to_utc_iso, fingerprint, sha256_hex


def test_fingerprint_format():
    fp = fingerprint(b"abc")
    assert fp.replace(":", "").lower() == sha256_hex(b"abc")
    assert len(fp.split(":")) == 32


def test_dt_to_utc_iso():
    assert dt_to_utc_iso(datetime(2026, 1, 2, 3, 4, 5, 999)) == "2026-01-02T03:04:05Z"
    plus_two = timezone(timedelta(hours=2))
    assert dt_to_utc_iso(datetime(2026, 1, 2, 5, 4, 5, tzinfo=plus_two)) == "2026-01-02T03:04:05Z"
