"""Cross-reference billing NPIs against the NPPES bulk registry file.

Only the handful of columns we need are read from the ~330-column CSV, and
only rows for NPIs that actually bill Medicaid are kept.
"""

import json
import logging
import os
import re
import subprocess
import tempfile
from typing import Optional

import duckdb

from medicaid_rollup.output import dump_json, write_atomic

log = logging.getLogger("medicaid_rollup.nppes")

NPI_PATTERN = re.compile(r"^\d{10}$")

NPPES_COLUMNS = {
    "NPI": "npi",
    "Entity Type Code": "entity_type_code",
    "Provider Organization Name (Legal Business Name)": "org_name",
    "Provider Last Name (Legal Name)": "last_name",
    "Provider First Name": "first_name",
    "Provider Business Practice Location Address City Name": "city",
    "Provider Business Practice Location Address State Name": "state",
    "Provider Business Practice Location Address Postal Code": "postal_code",
}


def load_target_npis(path) -> list[str]:
    """Read the one-NPI-per-line list, keeping only 10-digit ids."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Target NPI list not found: {path}")
    npis = set()
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            npi = line.strip()
            if NPI_PATTERN.match(npi):
                npis.add(npi)
    return sorted(npis)


def provider_name(entity_type: str, org_name: str, first_name: str, last_name: str) -> str:
    """Organization name for entity type 2, else "First Last"."""
    if entity_type == "2" and org_name:
        return org_name
    if last_name:
        return f"{first_name} {last_name}" if first_name else last_name
    return org_name or ""


def normalize_zip(raw: str) -> str:
    return re.sub(r"[^0-9]", "", raw or "")[:5]


def _csv_from_zip(zip_path: str, tmp_path: str) -> None:
    """Stream the main npidata CSV out of the NPPES zip into tmp_path."""
    result = subprocess.run(["unzip", "-l", zip_path], capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"Cannot list {zip_path}: {result.stderr}")
    csv_name = None
    for line in result.stdout.split("\n"):
        line = line.strip()
        if "npidata_pfile_" in line and line.endswith(".csv") and "fileheader" not in line:
            csv_name = line.split()[-1]
            break
    if not csv_name:
        raise FileNotFoundError("npidata_pfile CSV not found in zip")

    log.info("  Extracting %s from zip...", csv_name)
    with open(tmp_path, "wb") as out:
        subprocess.run(["unzip", "-p", zip_path, csv_name], stdout=out, check=True)


def query_registry(con: duckdb.DuckDBPyConnection, csv_path: str, npis: list[str]) -> list[tuple]:
    """Return registry rows for the target NPIs."""
    con.execute("CREATE OR REPLACE TEMP TABLE target_npis (npi VARCHAR)")
    con.executemany("INSERT INTO target_npis VALUES (?)", [(npi,) for npi in npis])
    select = ",\n                ".join(f'"{src}" AS {alias}' for src, alias in NPPES_COLUMNS.items())
    return con.execute(f"""
        WITH registry AS (
            SELECT
                {select}
            FROM read_csv('{csv_path}', header=true, delim=',', quote='"', all_varchar=true)
        )
        SELECT r.npi, r.entity_type_code, r.org_name, r.last_name, r.first_name,
               r.city, r.state, r.postal_code
        FROM registry r
        INNER JOIN target_npis t ON r.npi = t.npi
        ORDER BY r.npi
    """).fetchall()


def extract_nppes(source, npi_list_path, output_path,
                  zip_centroids_path: Optional[str] = None,
                  memory_limit: str = "1GB") -> dict[str, dict]:
    """Build npi -> {state, name, city, zip, lat, lng} and write it as JSON.

    source is either the npidata CSV or the NPPES zip download.
    """
    source = str(source)
    if not os.path.exists(source):
        raise FileNotFoundError(f"NPPES data not found: {source}")

    npis = load_target_npis(npi_list_path)
    log.info("  Target NPIs: %s", f"{len(npis):,}")
    if not npis:
        raise ValueError(f"No target NPIs found in {npi_list_path}")

    centroids = {}
    if zip_centroids_path and os.path.exists(zip_centroids_path):
        with open(zip_centroids_path, "r", encoding="utf-8") as f:
            centroids = json.load(f)
        log.info("  Zip centroids loaded: %s", f"{len(centroids):,}")
    else:
        log.warning("zip-centroids.json not found, lat/lng will be null")

    tmp_path = None
    con = duckdb.connect(":memory:")
    con.execute(f"SET memory_limit = '{memory_limit}'")
    try:
        csv_path = source
        if source.endswith(".zip"):
            with tempfile.NamedTemporaryFile(suffix=".csv", delete=False) as tmp:
                tmp_path = tmp.name
            _csv_from_zip(source, tmp_path)
            csv_path = tmp_path
        rows = query_registry(con, csv_path, npis)
    finally:
        con.close()
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)

    results: dict[str, dict] = {}
    for npi, entity_type, org_name, last_name, first_name, city, state, postal_code in rows:
        name = provider_name(entity_type or "", org_name or "", first_name or "", last_name or "")
        state = state or ""
        if not (state or name):
            continue
        zip_code = normalize_zip(postal_code)
        centroid = centroids.get(zip_code) if zip_code else None
        results[npi] = {
            "state": state,
            "name": name,
            "city": city or "",
            "zip": zip_code,
            "lat": centroid["lat"] if centroid else None,
            "lng": centroid["lng"] if centroid else None,
        }

    log.info("  Matched: %s / %s target NPIs", f"{len(results):,}", f"{len(npis):,}")
    write_atomic(output_path, dump_json(results))
    log.info("Wrote %s", output_path)
    return results
