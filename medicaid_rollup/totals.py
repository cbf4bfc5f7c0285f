"""Pass 1: running totals by procedure, provider and month.

Memory is proportional to the number of distinct keys, never to the row count.
"""

import logging
import time
from typing import Iterable

from medicaid_rollup.config import CUTOFF_MONTH, PROGRESS_EVERY
from medicaid_rollup.reader import ClaimRecord, ReadStats, iter_claims

log = logging.getLogger("medicaid_rollup.totals")


class Totals:
    """Additive paid / claims / beneficiaries accumulator."""

    __slots__ = ("paid", "claims", "beneficiaries")

    def __init__(self):
        self.paid = 0.0
        self.claims = 0
        self.beneficiaries = 0

    def add(self, paid: float, claims: int, beneficiaries: int) -> None:
        self.paid += paid
        self.claims += claims
        self.beneficiaries += beneficiaries


class ProcedureTotal(Totals):
    __slots__ = ()


class MonthTotal(Totals):
    __slots__ = ()


class ProviderTotal(Totals):
    """Provider totals plus the early/late split and a rough procedure count.

    procedure_count bumps whenever a row's code differs from the previous row
    seen for this provider. Rows are not grouped by provider, so interleaved
    codes are counted more than once and repeats after a gap are recounted.
    """

    __slots__ = ("early_paid", "early_claims", "late_paid", "late_claims",
                 "procedure_count", "last_procedure")

    def __init__(self):
        super().__init__()
        self.early_paid = 0.0
        self.early_claims = 0
        self.late_paid = 0.0
        self.late_claims = 0
        self.procedure_count = 0
        self.last_procedure = ""

    def add_claim(self, record: ClaimRecord, cutoff_month: str) -> None:
        self.add(record.paid, record.claims, record.beneficiaries)
        if record.month < cutoff_month:
            self.early_paid += record.paid
            self.early_claims += record.claims
        else:
            self.late_paid += record.paid
            self.late_claims += record.claims
        if record.procedure_code != self.last_procedure:
            self.procedure_count += 1
            self.last_procedure = record.procedure_code


class Pass1Result:
    def __init__(self, procedures: dict, providers: dict, months: dict, rows: int, skipped: int):
        self.procedures = procedures
        self.providers = providers
        self.months = months
        self.rows = rows
        self.skipped = skipped


class TotalsAggregator:
    """Owns the three Pass 1 maps for a single pipeline run."""

    def __init__(self, cutoff_month: str = CUTOFF_MONTH):
        self.cutoff_month = cutoff_month
        self.procedures: dict[str, ProcedureTotal] = {}
        self.providers: dict[str, ProviderTotal] = {}
        self.months: dict[str, MonthTotal] = {}

    def add(self, record: ClaimRecord) -> None:
        proc = self.procedures.get(record.procedure_code)
        if proc is None:
            proc = self.procedures[record.procedure_code] = ProcedureTotal()
        proc.add(record.paid, record.claims, record.beneficiaries)

        prov = self.providers.get(record.provider_id)
        if prov is None:
            prov = self.providers[record.provider_id] = ProviderTotal()
        prov.add_claim(record, self.cutoff_month)

        month = self.months.get(record.month)
        if month is None:
            month = self.months[record.month] = MonthTotal()
        month.add(record.paid, record.claims, record.beneficiaries)

    def consume(self, records: Iterable[ClaimRecord], progress_every: int = PROGRESS_EVERY) -> int:
        start = time.time()
        count = 0
        for record in records:
            self.add(record)
            count += 1
            if progress_every and count % progress_every == 0:
                log.info("  %s rows (%.0fs)", f"{count:,}", time.time() - start)
        return count


def run_pass1(path, cutoff_month: str = CUTOFF_MONTH, progress_every: int = PROGRESS_EVERY) -> Pass1Result:
    """Stream the source once and return the totals maps."""
    log.info("=== Pass 1: Building totals ===")
    start = time.time()
    stats = ReadStats()
    agg = TotalsAggregator(cutoff_month)
    agg.consume(iter_claims(path, stats), progress_every)

    log.info("Pass 1 complete: %s rows in %.0fs (%s malformed rows skipped)",
             f"{stats.rows:,}", time.time() - start, f"{stats.skipped:,}")
    log.info("  Procedures: %s", f"{len(agg.procedures):,}")
    log.info("  Providers:  %s", f"{len(agg.providers):,}")
    log.info("  Months:     %d", len(agg.months))
    return Pass1Result(agg.procedures, agg.providers, agg.months, stats.rows, stats.skipped)
