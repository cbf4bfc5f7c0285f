"""Top-K membership sets derived from Pass 1 totals."""

import logging

from medicaid_rollup.config import TOP_MONTHLY_PROVIDERS, TOP_PROCEDURES, TOP_PROVIDERS

log = logging.getLogger("medicaid_rollup.topk")


def rank_by_paid(totals: dict) -> list[str]:
    """Keys ordered by descending paid.

    sorted() is stable and dicts keep insertion order, so ties stay in
    first-seen order.
    """
    return sorted(totals, key=lambda key: totals[key].paid, reverse=True)


class TopSets:
    """Ranked key lists and frozen membership sets for Pass 2."""

    def __init__(self, procedure_ranking: list[str], provider_ranking: list[str],
                 top_procedures: int, top_providers: int, top_monthly_providers: int):
        self.procedure_ranking = procedure_ranking
        self.provider_ranking = provider_ranking
        self.procedures = frozenset(procedure_ranking[:top_procedures])
        self.providers = frozenset(provider_ranking[:top_providers])
        self.monthly_providers = frozenset(provider_ranking[:top_monthly_providers])


def select_top_sets(procedures: dict, providers: dict,
                    top_procedures: int = TOP_PROCEDURES,
                    top_providers: int = TOP_PROVIDERS,
                    top_monthly_providers: int = TOP_MONTHLY_PROVIDERS) -> TopSets:
    procedure_ranking = rank_by_paid(procedures)
    provider_ranking = rank_by_paid(providers)
    top = TopSets(procedure_ranking, provider_ranking,
                  top_procedures, top_providers, top_monthly_providers)

    if procedure_ranking:
        code = procedure_ranking[0]
        log.info("Top procedure: %s ($%.2fB)", code, procedures[code].paid / 1e9)
    if provider_ranking:
        npi = provider_ranking[0]
        log.info("Top provider: %s ($%.1fM)", npi, providers[npi].paid / 1e6)
    return top
