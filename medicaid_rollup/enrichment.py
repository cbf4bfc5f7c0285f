"""Optional side mappings: provider directory and procedure descriptions.

Both are keyed lookups produced by separate enrichment steps (NPPES bulk
extract, NPPES API, NLM API). Missing files degrade the output but never stop
a run.
"""

import json
import logging
import os

from medicaid_rollup.config import (
    CPT_MANUAL_FILE,
    HCPCS_DESCRIPTIONS_FILE,
    NPI_LOOKUP_FULL_FILE,
    NPI_STATES_FILE,
)

log = logging.getLogger("medicaid_rollup.enrichment")


def _read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _entries(data) -> list:
    """Accept either a list of records or an object keyed by id."""
    if isinstance(data, dict):
        return list(data.values())
    return list(data)


def load_provider_directory(data_dir) -> dict[str, dict]:
    """Return npi -> {"state", "name", "lat", "lng"}.

    The full NPPES extract wins; API lookups only fill gaps.
    """
    directory: dict[str, dict] = {}
    full_path = os.path.join(data_dir, NPI_LOOKUP_FULL_FILE)
    states_path = os.path.join(data_dir, NPI_STATES_FILE)

    if os.path.exists(full_path):
        for npi, info in _read_json(full_path).items():
            directory[npi] = {
                "state": info.get("state") or None,
                "name": info.get("name") or None,
                "lat": info.get("lat"),
                "lng": info.get("lng"),
            }
        log.info("Loaded full NPI mappings: %s providers", f"{len(directory):,}")

    if os.path.exists(states_path):
        added = 0
        for entry in _entries(_read_json(states_path)):
            npi = entry.get("npi")
            if not npi:
                continue
            info = directory.setdefault(npi, {"state": None, "name": None, "lat": None, "lng": None})
            if entry.get("state") and not info["state"]:
                info["state"] = entry["state"]
                added += 1
            if entry.get("name") and not info["name"]:
                info["name"] = entry["name"]
        log.info("Merged API NPI lookups: %d states added", added)

    if not directory:
        log.warning("No NPI state mapping found in %s. State analysis will be empty.", data_dir)
    else:
        with_state = sum(1 for info in directory.values() if info["state"])
        log.info("  Providers with state: %s", f"{with_state:,}")
    return directory


def load_procedure_descriptions(data_dir) -> dict[str, str]:
    """Return procedure code -> short description (long as fallback)."""
    descriptions: dict[str, str] = {}
    api_path = os.path.join(data_dir, HCPCS_DESCRIPTIONS_FILE)
    manual_path = os.path.join(data_dir, CPT_MANUAL_FILE)

    if os.path.exists(api_path):
        for entry in _entries(_read_json(api_path)):
            desc = entry.get("shortDesc") or entry.get("longDesc")
            if entry.get("code") and desc:
                descriptions[entry["code"]] = desc
        log.info("Loaded HCPCS descriptions: %d", len(descriptions))

    if os.path.exists(manual_path):
        added = 0
        for entry in _entries(_read_json(manual_path)):
            code = entry.get("code")
            if code and entry.get("shortDesc") and code not in descriptions:
                descriptions[code] = entry["shortDesc"]
                added += 1
        log.info("Added %d manual CPT descriptions (total: %d)", added, len(descriptions))

    if not descriptions:
        log.warning("No procedure descriptions found in %s. Descriptions will be null.", data_dir)
    return descriptions
