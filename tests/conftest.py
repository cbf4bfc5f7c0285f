"""Shared test fixtures: synthetic claims CSVs and enrichment side files."""

import json

import pytest

HEADER = (
    "BILLING_PROVIDER_NPI_NUM,SERVICING_PROVIDER_NPI_NUM,HCPCS_CODE,CLAIM_FROM_MONTH,"
    "TOTAL_UNIQUE_BENEFICIARIES,TOTAL_CLAIMS,TOTAL_PAID"
)

# Provider NPIs for the sample dataset
NPI_MIXED = "1000000001"    # 99213 early + late, T1019 early; largest provider
NPI_HIGH = "1000000002"     # 99213 at 8x the median cost per claim
NPI_SMALL = "1000000003"    # 99213 at median, below the top-provider cut
NPI_VOLUME = "1000000004"   # 99213 at median, high volume
NPI_LOW = "1000000005"      # 99213 at 0.4x the median
NPI_TINY = "1000000006"     # only a rare J-code

SAMPLE_ROWS = [
    (NPI_MIXED, "99213", "2021-01", 50, 200, 10000.0),
    (NPI_HIGH, "99213", "2021-03", 40, 150, 60000.0),
    (NPI_MIXED, "T1019", "2021-02", 10, 100, 50000.0),
    (NPI_SMALL, "99213", "2021-04", 30, 120, 6000.0),
    (NPI_VOLUME, "99213", "2021-05", 30, 300, 15000.0),
    (NPI_LOW, "99213", "2021-06", 60, 500, 10000.0),
    (NPI_TINY, "J1234", "2021-08", 1, 2, 100.0),
    (NPI_MIXED, "99213", "2021-09", 50, 200, 12000.0),
]

MALFORMED_LINES = [
    "bad,row",
    "1000000007,1000000007,99213,2021-01,abc,1,1",
    "1000000008,1000000008,99213,2021-01,1,1,not-a-number",
]

SCENARIO_ROWS = [
    ("P1", "CODE_A", "2021-01", 5, 10, 1000.0),
    ("P1", "CODE_A", "2021-08", 5, 10, 2000.0),
    ("P2", "CODE_A", "2021-01", 2, 4, 50000.0),
]


def format_row(row) -> str:
    npi, code, month, bene, claims, paid = row
    return f"{npi},{npi},{code},{month},{bene},{claims},{paid}"


@pytest.fixture
def write_claims(tmp_path):
    """Factory: write rows (tuples or raw lines) to a CSV with a header."""
    def _write(rows, name="claims.csv", newline="\n"):
        lines = [HEADER]
        for row in rows:
            lines.append(row if isinstance(row, str) else format_row(row))
        path = tmp_path / name
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(newline.join(lines) + newline)
        return path
    return _write


@pytest.fixture
def sample_csv(write_claims):
    rows = SAMPLE_ROWS[:3] + MALFORMED_LINES + SAMPLE_ROWS[3:]
    return write_claims(rows)


@pytest.fixture
def scenario_csv(write_claims):
    return write_claims(SCENARIO_ROWS, name="scenario.csv")


@pytest.fixture
def data_dir(tmp_path):
    """Side files: two providers with a state, one with a name only, descriptions."""
    d = tmp_path / "data"
    d.mkdir()
    (d / "npi-lookup-full.json").write_text(json.dumps({
        NPI_MIXED: {"state": "NY", "name": "MIXED CLINIC", "city": "ALBANY",
                    "zip": "12207", "lat": 42.65, "lng": -73.75},
        NPI_VOLUME: {"state": "", "name": "VOLUME GROUP", "city": "", "zip": "",
                     "lat": None, "lng": None},
    }))
    (d / "npi-states.json").write_text(json.dumps([
        {"npi": NPI_HIGH, "state": "CA", "city": "FRESNO", "name": "HIGH BILLING LLC"},
        {"npi": NPI_MIXED, "state": "NJ", "name": "SHOULD NOT OVERRIDE"},
    ]))
    (d / "hcpcs-descriptions.json").write_text(json.dumps([
        {"code": "99213", "shortDesc": "Office visit est low", "longDesc": "Office or other outpatient visit"},
        {"code": "T1019", "shortDesc": None, "longDesc": "Personal care services per 15 minutes"},
        {"code": "J1234", "shortDesc": None, "longDesc": None},
    ]))
    (d / "cpt-descriptions-manual.json").write_text(json.dumps([
        {"code": "99213", "shortDesc": "manual should not override"},
        {"code": "J1234", "shortDesc": "Manual J-code"},
    ]))
    return d


@pytest.fixture
def empty_data_dir(tmp_path):
    d = tmp_path / "empty-data"
    d.mkdir()
    return d
