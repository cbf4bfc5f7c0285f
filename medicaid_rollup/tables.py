"""Output table builders.

Each builder returns a list of plain dicts whose keys are the bulk-load field
names. Currency is rounded to the cent, counts pass through, undefined ratios
are None, and every table gets a canonical sort so reruns are byte-identical.
"""

from medicaid_rollup.categories import hcpcs_category
from medicaid_rollup.config import (
    MAX_OUTLIERS,
    PROVIDERS_PER_PROCEDURE,
    TOP_MONTHLY_PROCEDURES,
    TOP_PROVIDERS,
)
from medicaid_rollup.stats import (
    classify_outlier,
    cost_index,
    growth_pct,
    is_outlier_candidate,
    median,
    round_currency,
    round_index,
    safe_ratio,
)

NO_INFO = {"state": None, "name": None, "lat": None, "lng": None}


def _per_unit(paid: float, units: int):
    return round_currency(safe_ratio(paid, units))


# ---------------------------------------------------------------------------
# Intermediate lookups
# ---------------------------------------------------------------------------

def procedure_medians(cost_samples: dict) -> dict[str, float]:
    """Median cost per claim for every procedure that has samples."""
    medians = {}
    for code, sample in cost_samples.items():
        value = median(sample.values)
        if value is not None:
            medians[code] = value
    return medians


def procedure_provider_counts(provider_procedures: dict, top_procedures) -> dict[str, int]:
    """Distinct providers per top procedure.

    Only top procedures see every provider in Pass 2, so other codes are left
    out rather than reported with a partial count.
    """
    counts: dict[str, int] = {}
    for npi, code in provider_procedures:
        if code in top_procedures:
            counts[code] = counts.get(code, 0) + 1
    return counts


def top_procedure_by_provider(provider_procedures: dict, providers) -> dict[str, tuple]:
    """npi -> (code, paid) of the provider's largest procedure by paid.

    Ties go to the lower procedure code.
    """
    best: dict[str, tuple] = {}
    for (npi, code), entry in provider_procedures.items():
        if npi not in providers:
            continue
        current = best.get(npi)
        if (current is None or entry.paid > current[1]
                or (entry.paid == current[1] and code < current[0])):
            best[npi] = (code, entry.paid)
    return best


# ---------------------------------------------------------------------------
# Pass 1 tables
# ---------------------------------------------------------------------------

def build_monthly_national(months: dict) -> list[dict]:
    rows = []
    for month in sorted(months):
        m = months[month]
        rows.append({
            "month": month,
            "totalPaid": round_currency(m.paid),
            "totalClaims": m.claims,
            "totalBeneficiaries": m.beneficiaries,
            # Distinct providers/procedures per month are not tracked in Pass 1
            "providerCount": None,
            "procedureCount": None,
            "avgCostPerClaim": _per_unit(m.paid, m.claims),
            "avgCostPerBeneficiary": _per_unit(m.paid, m.beneficiaries),
        })
    return rows


def build_procedure_summary(procedures: dict, ranking: list[str], medians: dict,
                            provider_counts: dict, descriptions: dict) -> list[dict]:
    """One row per procedure, ordered by total paid."""
    rows = []
    for code in ranking:
        p = procedures[code]
        rows.append({
            "hcpcsCode": code,
            "category": hcpcs_category(code),
            "description": descriptions.get(code),
            "totalPaid": round_currency(p.paid),
            "totalClaims": p.claims,
            "totalBeneficiaries": p.beneficiaries,
            "providerCount": provider_counts.get(code, 0),
            "avgCostPerClaim": _per_unit(p.paid, p.claims),
            "medianCostPerClaim": round_currency(medians.get(code)),
            "avgCostPerBeneficiary": _per_unit(p.paid, p.beneficiaries),
            "claimsPerBeneficiary": round_currency(safe_ratio(p.claims, p.beneficiaries)),
        })
    return rows


def build_provider_summary(providers: dict, ranking: list[str], procedure_sets: dict,
                           top_procedures: dict, directory: dict,
                           limit: int = TOP_PROVIDERS) -> list[dict]:
    """Top providers by paid with growth metrics.

    procedureCount is exact for Pass 2 providers and falls back to the
    approximate Pass 1 counter otherwise.
    """
    rows = []
    for npi in ranking[:limit]:
        p = providers[npi]
        info = directory.get(npi, NO_INFO)
        codes = procedure_sets.get(npi)
        top = top_procedures.get(npi)
        early_cpc = safe_ratio(p.early_paid, p.early_claims)
        late_cpc = safe_ratio(p.late_paid, p.late_claims)
        rows.append({
            "npi": npi,
            "name": info["name"],
            "state": info["state"],
            "totalPaid": round_currency(p.paid),
            "totalClaims": p.claims,
            "totalBeneficiaries": p.beneficiaries,
            "procedureCount": len(codes) if codes is not None else p.procedure_count,
            "avgCostPerClaim": _per_unit(p.paid, p.claims),
            "avgCostPerBeneficiary": _per_unit(p.paid, p.beneficiaries),
            "topProcedure": top[0] if top else None,
            "topProcedurePaid": round_currency(top[1]) if top else None,
            "spendingGrowthPct": round_currency(growth_pct(p.early_paid, p.late_paid)),
            "costPerClaimGrowthPct": round_currency(growth_pct(early_cpc, late_cpc)),
            "volumeGrowthPct": round_currency(growth_pct(p.early_claims, p.late_claims)),
            "lat": info["lat"],
            "lng": info["lng"],
        })
    return rows


# ---------------------------------------------------------------------------
# Pass 2 tables
# ---------------------------------------------------------------------------

def build_procedure_monthly(procedure_months: dict, procedure_ranking: list[str],
                            top_n: int = TOP_MONTHLY_PROCEDURES) -> list[dict]:
    wanted = set(procedure_ranking[:top_n])
    rows = []
    for (code, month), pm in procedure_months.items():
        if code not in wanted:
            continue
        rows.append({
            "hcpcsCode": code,
            "month": month,
            "totalPaid": round_currency(pm.paid),
            "totalClaims": pm.claims,
            "totalBeneficiaries": pm.beneficiaries,
            "avgCostPerClaim": _per_unit(pm.paid, pm.claims),
            "avgCostPerBeneficiary": _per_unit(pm.paid, pm.beneficiaries),
            "providerCount": pm.rows,
        })
    rows.sort(key=lambda r: (r["hcpcsCode"], r["month"]))
    return rows


def build_provider_procedures(provider_procedures: dict, procedure_ranking: list[str],
                              top_procedures, medians: dict, directory: dict,
                              per_procedure: int = PROVIDERS_PER_PROCEDURE) -> list[dict]:
    """Largest providers for each top procedure, with their cost index."""
    by_code: dict[str, list] = {}
    for (npi, code), entry in provider_procedures.items():
        if code in top_procedures:
            by_code.setdefault(code, []).append((npi, entry))

    rows = []
    for code in procedure_ranking:
        peers = by_code.get(code)
        if not peers:
            continue
        peers.sort(key=lambda item: (-item[1].paid, item[0]))
        proc_median = medians.get(code)
        for rank, (npi, entry) in enumerate(peers[:per_procedure], start=1):
            cpc = safe_ratio(entry.paid, entry.claims)
            info = directory.get(npi, NO_INFO)
            rows.append({
                "npi": npi,
                "hcpcsCode": code,
                "totalPaid": round_currency(entry.paid),
                "totalClaims": entry.claims,
                "totalBeneficiaries": entry.beneficiaries,
                "costPerClaim": round_currency(cpc),
                "costPerBeneficiary": _per_unit(entry.paid, entry.beneficiaries),
                "procedureMedianCostPerClaim": round_currency(proc_median),
                "costIndex": round_index(cost_index(cpc, proc_median)),
                "state": info["state"],
                "providerName": info["name"],
                "rn": rank,
            })
    return rows


def build_provider_monthly(provider_months: dict) -> list[dict]:
    rows = []
    for (npi, month), pm in provider_months.items():
        rows.append({
            "npi": npi,
            "month": month,
            "totalPaid": round_currency(pm.paid),
            "totalClaims": pm.claims,
            "totalBeneficiaries": pm.beneficiaries,
            "avgCostPerClaim": _per_unit(pm.paid, pm.claims),
            "procedureCount": pm.rows,
        })
    rows.sort(key=lambda r: (r["npi"], r["month"]))
    return rows


def build_outliers(provider_procedures: dict, medians: dict, directory: dict,
                   descriptions: dict, limit: int = MAX_OUTLIERS) -> list[dict]:
    """Provider-procedure pairs billing far above or below the procedure median.

    The limit caps output size; it is not a sampling step.
    """
    candidates = []
    for (npi, code), entry in provider_procedures.items():
        if not is_outlier_candidate(entry.claims, entry.paid):
            continue
        proc_median = medians.get(code)
        cpc = entry.paid / entry.claims
        index = cost_index(cpc, proc_median)
        direction = classify_outlier(index)
        if direction is None:
            continue
        candidates.append((npi, code, entry, cpc, proc_median, index, direction))

    candidates.sort(key=lambda c: (-c[2].paid, c[0], c[1]))
    rows = []
    for npi, code, entry, cpc, proc_median, index, direction in candidates[:limit]:
        info = directory.get(npi, NO_INFO)
        rows.append({
            "npi": npi,
            "state": info["state"],
            "hcpcsCode": code,
            "totalPaid": round_currency(entry.paid),
            "totalClaims": entry.claims,
            "totalBeneficiaries": entry.beneficiaries,
            "costPerClaim": round_currency(cpc),
            "procedureMedian": round_currency(proc_median),
            "costIndex": round_index(index),
            "outlierType": direction,
            "providerName": info["name"],
            "hcpcsDescription": descriptions.get(code),
        })
    return rows


# ---------------------------------------------------------------------------
# State tables
#
# States come from the provider directory. Providers without a mapping are
# dropped, so state totals undercount.
# ---------------------------------------------------------------------------

def build_state_summary(provider_summary: list[dict], provider_procedures: dict) -> list[dict]:
    """Roll the provider summary rows up to their registered state."""
    states: dict[str, dict] = {}
    npi_state = {}
    for row in provider_summary:
        state = row["state"]
        if not state:
            continue
        npi_state[row["npi"]] = state
        s = states.get(state)
        if s is None:
            s = states[state] = {"paid": 0.0, "claims": 0, "bene": 0, "providers": 0, "codes": set()}
        s["paid"] += row["totalPaid"]
        s["claims"] += row["totalClaims"]
        s["bene"] += row["totalBeneficiaries"]
        s["providers"] += 1

    for npi, code in provider_procedures:
        state = npi_state.get(npi)
        if state is not None:
            states[state]["codes"].add(code)

    rows = []
    for state, s in states.items():
        rows.append({
            "state": state,
            "totalPaid": round_currency(s["paid"]),
            "totalClaims": s["claims"],
            "totalBeneficiaries": s["bene"],
            "providerCount": s["providers"],
            "procedureCount": len(s["codes"]),
            "avgCostPerClaim": _per_unit(s["paid"], s["claims"]),
            "avgCostPerBeneficiary": _per_unit(s["paid"], s["bene"]),
            "claimsPerBeneficiary": round_currency(safe_ratio(s["claims"], s["bene"])),
        })
    rows.sort(key=lambda r: (-r["totalPaid"], r["state"]))
    return rows


def build_state_monthly(provider_months: dict, directory: dict) -> list[dict]:
    """State x month totals over the month-level provider detail."""
    totals: dict[tuple[str, str], list] = {}
    for (npi, month), pm in provider_months.items():
        state = directory.get(npi, NO_INFO)["state"]
        if not state:
            continue
        acc = totals.setdefault((state, month), [0.0, 0, 0])
        acc[0] += pm.paid
        acc[1] += pm.claims
        acc[2] += pm.beneficiaries

    rows = []
    for (state, month), (paid, claims, bene) in sorted(totals.items()):
        rows.append({
            "state": state,
            "month": month,
            "totalPaid": round_currency(paid),
            "totalClaims": claims,
            "totalBeneficiaries": bene,
            "avgCostPerClaim": _per_unit(paid, claims),
            "avgCostPerBeneficiary": _per_unit(paid, bene),
        })
    return rows


def build_state_procedures(provider_procedures: dict, directory: dict) -> list[dict]:
    """State x procedure totals over the provider-procedure detail."""
    totals: dict[tuple[str, str], list] = {}
    for (npi, code), entry in provider_procedures.items():
        state = directory.get(npi, NO_INFO)["state"]
        if not state:
            continue
        acc = totals.setdefault((state, code), [0.0, 0, 0, 0])
        acc[0] += entry.paid
        acc[1] += entry.claims
        acc[2] += entry.beneficiaries
        acc[3] += 1

    rows = []
    for (state, code), (paid, claims, bene, providers) in totals.items():
        rows.append({
            "state": state,
            "hcpcsCode": code,
            "totalPaid": round_currency(paid),
            "totalClaims": claims,
            "totalBeneficiaries": bene,
            "avgCostPerClaim": _per_unit(paid, claims),
            "providerCount": providers,
        })
    rows.sort(key=lambda r: (r["state"], -r["totalPaid"], r["hcpcsCode"]))
    return rows
