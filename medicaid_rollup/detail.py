"""Pass 2: detail aggregates restricted to the Top-K membership sets.

Working memory is bounded by the size of the membership sets (times months or
peer fan-out), not by the number of rows in the source.
"""

import logging
import time
from typing import Iterable

from medicaid_rollup.config import PROGRESS_EVERY, SAMPLE_CAP
from medicaid_rollup.reader import ClaimRecord, ReadStats, iter_claims
from medicaid_rollup.topk import TopSets
from medicaid_rollup.totals import Totals

log = logging.getLogger("medicaid_rollup.detail")


class CountedTotals(Totals):
    """Totals plus a row counter.

    For procedure x month the counter stands in for the provider count, for
    provider x month it stands in for the procedure count. Both count rows.
    """

    __slots__ = ("rows",)

    def __init__(self):
        super().__init__()
        self.rows = 0

    def add(self, paid: float, claims: int, beneficiaries: int) -> None:
        super().add(paid, claims, beneficiaries)
        self.rows += 1


class CostSample:
    """First-N cost-per-claim values for one procedure.

    Once full, later values are dropped. This favors rows early in file order;
    it is not a reservoir sample.
    """

    __slots__ = ("values", "cap")

    def __init__(self, cap: int = SAMPLE_CAP):
        self.values: list[float] = []
        self.cap = cap

    def push(self, value: float) -> bool:
        if len(self.values) >= self.cap:
            return False
        self.values.append(value)
        return True

    def __len__(self) -> int:
        return len(self.values)


class Pass2Result:
    def __init__(self, aggregator: "DetailAggregator", rows: int, skipped: int):
        self.procedure_months = aggregator.procedure_months
        self.provider_procedures = aggregator.provider_procedures
        self.provider_months = aggregator.provider_months
        self.provider_procedure_sets = aggregator.provider_procedure_sets
        self.cost_samples = aggregator.cost_samples
        self.rows = rows
        self.skipped = skipped


class DetailAggregator:
    def __init__(self, top_sets: TopSets, sample_cap: int = SAMPLE_CAP):
        self.top_sets = top_sets
        self.sample_cap = sample_cap
        self.procedure_months: dict[tuple[str, str], CountedTotals] = {}
        self.provider_procedures: dict[tuple[str, str], Totals] = {}
        self.provider_months: dict[tuple[str, str], CountedTotals] = {}
        self.provider_procedure_sets: dict[str, set] = {}
        self.cost_samples: dict[str, CostSample] = {}
        self.matched = 0

    def _add_provider_procedure(self, record: ClaimRecord) -> None:
        key = (record.provider_id, record.procedure_code)
        entry = self.provider_procedures.get(key)
        if entry is None:
            entry = self.provider_procedures[key] = Totals()
        entry.add(record.paid, record.claims, record.beneficiaries)

    def add(self, record: ClaimRecord) -> None:
        npi = record.provider_id
        code = record.procedure_code
        is_top_procedure = code in self.top_sets.procedures
        is_top_provider = npi in self.top_sets.providers
        is_monthly_provider = npi in self.top_sets.monthly_providers
        if not (is_top_procedure or is_top_provider or is_monthly_provider):
            return
        self.matched += 1

        if is_top_procedure:
            key = (code, record.month)
            pm = self.procedure_months.get(key)
            if pm is None:
                pm = self.procedure_months[key] = CountedTotals()
            pm.add(record.paid, record.claims, record.beneficiaries)

            self._add_provider_procedure(record)

            if record.claims > 0:
                sample = self.cost_samples.get(code)
                if sample is None:
                    sample = self.cost_samples[code] = CostSample(self.sample_cap)
                sample.push(record.paid / record.claims)

        if is_top_provider:
            codes = self.provider_procedure_sets.get(npi)
            if codes is None:
                codes = self.provider_procedure_sets[npi] = set()
            codes.add(code)
            # Already accumulated above for top procedures
            if not is_top_procedure:
                self._add_provider_procedure(record)

        if is_monthly_provider:
            key = (npi, record.month)
            entry = self.provider_months.get(key)
            if entry is None:
                entry = self.provider_months[key] = CountedTotals()
            entry.add(record.paid, record.claims, record.beneficiaries)

    def consume(self, records: Iterable[ClaimRecord], progress_every: int = PROGRESS_EVERY) -> int:
        start = time.time()
        count = 0
        for record in records:
            self.add(record)
            count += 1
            if progress_every and count % progress_every == 0:
                log.info("  %s rows (%.0fs, %s matched)",
                         f"{count:,}", time.time() - start, f"{self.matched:,}")
        return count


def run_pass2(path, top_sets: TopSets, sample_cap: int = SAMPLE_CAP,
              progress_every: int = PROGRESS_EVERY) -> Pass2Result:
    """Re-read the source and aggregate detail for Top-K members only."""
    log.info("=== Pass 2: Building detail data ===")
    log.info("  Tracking %d procedures, %d providers, %d for monthly",
             len(top_sets.procedures), len(top_sets.providers), len(top_sets.monthly_providers))
    start = time.time()
    stats = ReadStats()
    agg = DetailAggregator(top_sets, sample_cap)
    agg.consume(iter_claims(path, stats), progress_every)

    log.info("Pass 2 complete: %s rows in %.0fs", f"{stats.rows:,}", time.time() - start)
    log.info("  ProcMonth entries:   %s", f"{len(agg.procedure_months):,}")
    log.info("  ProvProc entries:    %s", f"{len(agg.provider_procedures):,}")
    log.info("  ProvMonthly entries: %s", f"{len(agg.provider_months):,}")
    return Pass2Result(agg, stats.rows, stats.skipped)
