"""Line-oriented streaming reader for the raw claims CSV.

The source file is far too large to load, so every pass re-opens it and walks
it one line at a time. The header line is always discarded.
"""

import gzip
import math
import os
from typing import Iterator, Optional

from medicaid_rollup.config import MIN_FIELDS

READ_BUFFER = 512 * 1024
REPLACEMENT_CHAR = "\ufffd"


class ClaimRecord:
    """One source row. Transient: never collected into a list."""

    __slots__ = ("provider_id", "procedure_code", "month", "beneficiaries", "claims", "paid")

    def __init__(self, provider_id: str, procedure_code: str, month: str,
                 beneficiaries: int, claims: int, paid: float):
        self.provider_id = provider_id
        self.procedure_code = procedure_code
        self.month = month
        self.beneficiaries = beneficiaries
        self.claims = claims
        self.paid = paid

    def __repr__(self) -> str:
        return (f"ClaimRecord({self.provider_id!r}, {self.procedure_code!r}, {self.month!r}, "
                f"{self.beneficiaries}, {self.claims}, {self.paid})")


class ReadStats:
    """Row counters for one pass over the source."""

    def __init__(self):
        self.rows = 0
        self.skipped = 0


def ensure_source(path) -> None:
    """Fail fast when the primary claims file is missing."""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Claims data not found: {path}")


def _open(path):
    if str(path).endswith(".gz"):
        return gzip.open(path, "rt", encoding="utf-8", errors="replace", newline=None)
    return open(path, "r", encoding="utf-8", errors="replace", newline=None,
                buffering=READ_BUFFER)


def iter_lines(path) -> Iterator[str]:
    """Yield data lines (header skipped, line endings stripped)."""
    ensure_source(path)
    with _open(path) as f:
        next(f, None)
        for line in f:
            yield line.rstrip("\r\n")


def parse_claim(line: str) -> Optional[ClaimRecord]:
    """Parse one CSV line, or return None when the row is malformed.

    Columns: provider id, (servicing provider, unused), procedure code, month,
    beneficiaries, claims, paid. Extra trailing columns are ignored.
    """
    # Undecodable bytes arrive as U+FFFD; such rows are skipped, not fatal
    if REPLACEMENT_CHAR in line:
        return None
    parts = line.split(",")
    if len(parts) < MIN_FIELDS:
        return None
    provider_id = parts[0].strip()
    procedure_code = parts[2].strip()
    month = parts[3].strip()
    if not provider_id or not procedure_code or not month:
        return None
    try:
        beneficiaries = int(parts[4])
        claims = int(parts[5])
        paid = float(parts[6])
    except ValueError:
        return None
    if not math.isfinite(paid) or paid < 0 or claims < 0 or beneficiaries < 0:
        return None
    return ClaimRecord(provider_id, procedure_code, month, beneficiaries, claims, paid)


def iter_claims(path, stats: Optional[ReadStats] = None) -> Iterator[ClaimRecord]:
    """Yield valid claim records, counting processed and skipped rows."""
    if stats is None:
        stats = ReadStats()
    for line in iter_lines(path):
        if not line:
            continue
        record = parse_claim(line)
        if record is None:
            stats.skipped += 1
            continue
        stats.rows += 1
        yield record
