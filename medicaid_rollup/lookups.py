"""Per-id enrichment lookups against public APIs.

- NPPES NPI Registry: provider state, city and display name.
- NLM Clinical Tables: HCPCS short/long descriptions.

Both lookups resume from their previous output file and save progress
periodically, so an interrupted run can simply be restarted.
"""

import json
import logging
import os
import time
from typing import Optional

import requests

from medicaid_rollup.config import (
    HCPCS_DESCRIPTIONS_FILE,
    LOOKUP_DELAY_SECONDS,
    LOOKUP_SAVE_EVERY,
    LOOKUP_TIMEOUT,
    NLM_HCPCS_API_URL,
    NPI_STATES_FILE,
    NPPES_API_URL,
)
from medicaid_rollup.output import TABLE_FILES, dump_json, read_table, write_atomic

log = logging.getLogger("medicaid_rollup.lookups")


def lookup_npi(session: requests.Session, npi: str) -> Optional[dict]:
    """Look up a single NPI via the NPPES API."""
    try:
        resp = session.get(
            NPPES_API_URL,
            params={"version": "2.1", "number": npi},
            timeout=LOOKUP_TIMEOUT,
        )
        resp.raise_for_status()
        results = resp.json().get("results") or []
    except (requests.RequestException, ValueError) as e:
        log.warning("NPPES API lookup failed for NPI %s: %s", npi, e)
        return None
    if not results:
        return None

    r = results[0]
    basic = r.get("basic", {})
    addresses = r.get("addresses") or [{}]
    # First address is the practice location
    address = addresses[0]
    name = basic.get("organization_name")
    if not name:
        name = f"{basic.get('first_name') or ''} {basic.get('last_name') or ''}".strip() or None
    return {
        "npi": str(npi),
        "state": address.get("state") or None,
        "city": address.get("city") or None,
        "name": name,
    }


def lookup_hcpcs(session: requests.Session, code: str) -> dict:
    """Look up one HCPCS code; exact code matches only."""
    empty = {"code": code, "shortDesc": None, "longDesc": None}
    try:
        resp = session.get(
            NLM_HCPCS_API_URL,
            params={"terms": code, "df": "code,short_desc,long_desc", "maxList": 5},
            timeout=LOOKUP_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        log.warning("NLM API lookup failed for %s: %s", code, e)
        return empty
    # [total, [codes], extra, [[code, short_desc, long_desc], ...]]
    results = data[3] if isinstance(data, list) and len(data) > 3 else None
    for match in results or []:
        if match and match[0] == code:
            return {
                "code": code,
                "shortDesc": (match[1] if len(match) > 1 else None) or None,
                "longDesc": (match[2] if len(match) > 2 else None) or None,
            }
    return empty


def _load_existing(path, key: str) -> dict:
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return {entry[key]: entry for entry in data if entry.get(key)}


def _run_lookups(ids: list[str], results: dict, lookup, output_path,
                 delay: float, save_every: int, counted_field: str) -> dict:
    total = len(ids)
    for i, item in enumerate(ids, start=1):
        result = lookup(item)
        if result:
            results[item] = result
        if i % save_every == 0 or i == total:
            write_atomic(output_path, dump_json(list(results.values())))
            found = sum(1 for r in results.values() if r.get(counted_field))
            log.info("  Progress: %s/%s (%s with %s)", f"{i:,}", f"{total:,}", f"{found:,}", counted_field)
        if delay:
            time.sleep(delay)
    return results


def lookup_npi_states(data_dir, session: Optional[requests.Session] = None,
                      delay: float = LOOKUP_DELAY_SECONDS,
                      save_every: int = LOOKUP_SAVE_EVERY) -> dict:
    """Fill npi-states.json for every provider in provider-summary.json."""
    output_path = os.path.join(data_dir, NPI_STATES_FILE)
    providers = read_table(data_dir, TABLE_FILES["providers"])
    if providers is None:
        raise FileNotFoundError(
            f"No {TABLE_FILES['providers']} found in {data_dir}. Run the process step first."
        )

    existing = _load_existing(output_path, "npi")
    log.info("Loaded %s existing NPI lookups", f"{len(existing):,}")
    npis = [p["npi"] for p in providers if p["npi"] not in existing]
    log.info("Found %s providers, %s need lookup", f"{len(providers):,}", f"{len(npis):,}")
    if not npis:
        log.info("All NPIs already looked up. Nothing to do.")
        return existing

    session = session or requests.Session()
    return _run_lookups(npis, existing, lambda npi: lookup_npi(session, npi),
                        output_path, delay, save_every, "state")


def lookup_hcpcs_descriptions(data_dir, session: Optional[requests.Session] = None,
                              delay: float = LOOKUP_DELAY_SECONDS,
                              save_every: int = LOOKUP_SAVE_EVERY) -> dict:
    """Fill hcpcs-descriptions.json for every code in procedure-summary.json."""
    output_path = os.path.join(data_dir, HCPCS_DESCRIPTIONS_FILE)
    procedures = read_table(data_dir, TABLE_FILES["procedures"])
    if procedures is None:
        raise FileNotFoundError(
            f"No {TABLE_FILES['procedures']} found in {data_dir}. Run the process step first."
        )

    existing = _load_existing(output_path, "code")
    log.info("Loaded %s existing HCPCS lookups", f"{len(existing):,}")
    codes = [p["hcpcsCode"] for p in procedures if p["hcpcsCode"] not in existing]
    log.info("Found %s procedures, %s need lookup", f"{len(procedures):,}", f"{len(codes):,}")
    if not codes:
        log.info("All codes already looked up. Nothing to do.")
        return existing

    session = session or requests.Session()
    return _run_lookups(codes, existing, lambda code: lookup_hcpcs(session, code),
                        output_path, delay, save_every, "shortDesc")
