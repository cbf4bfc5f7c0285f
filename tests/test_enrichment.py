"""Tests for the enrichment side steps: side-file loading, API lookups, NPPES extract."""

import json
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
import requests

from medicaid_rollup.config import (
    HCPCS_DESCRIPTIONS_FILE,
    NPI_STATES_FILE,
    NPPES_API_URL,
)
from medicaid_rollup.enrichment import load_procedure_descriptions, load_provider_directory
from medicaid_rollup.lookups import (
    lookup_hcpcs,
    lookup_hcpcs_descriptions,
    lookup_npi,
    lookup_npi_states,
)
from medicaid_rollup.nppes import extract_nppes, load_target_npis, normalize_zip, provider_name
from medicaid_rollup.output import TABLE_FILES

from conftest import NPI_HIGH, NPI_MIXED, NPI_VOLUME


# ============================================================================
# Test helpers
# ============================================================================

class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


class FakeSession:
    """Serves canned payloads keyed by the looked-up id."""

    def __init__(self, payloads):
        self.payloads = payloads
        self.calls = []

    def get(self, url, params=None, timeout=None):
        key = params.get("number") or params.get("terms")
        self.calls.append((url, key))
        payload = self.payloads.get(key)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            return FakeResponse({}, status=404)
        return FakeResponse(payload)


def npi_payload(state, city, org=None, first=None, last=None):
    return {"results": [{
        "basic": {"organization_name": org, "first_name": first, "last_name": last},
        "addresses": [{"state": state, "city": city}, {"state": "ZZ"}],
    }]}


def write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


# ============================================================================
# Side files
# ============================================================================

class TestProviderDirectory:

    def test_full_extract_takes_precedence(self, data_dir):
        directory = load_provider_directory(data_dir)
        assert directory[NPI_MIXED]["state"] == "NY"
        assert directory[NPI_MIXED]["name"] == "MIXED CLINIC"
        assert directory[NPI_MIXED]["lat"] == 42.65

    def test_api_lookups_fill_gaps(self, data_dir):
        directory = load_provider_directory(data_dir)
        assert directory[NPI_HIGH] == {"state": "CA", "name": "HIGH BILLING LLC", "lat": None, "lng": None}

    def test_empty_state_becomes_none(self, data_dir):
        directory = load_provider_directory(data_dir)
        assert directory[NPI_VOLUME]["state"] is None
        assert directory[NPI_VOLUME]["name"] == "VOLUME GROUP"

    def test_states_file_keyed_by_npi(self, empty_data_dir):
        write_json(empty_data_dir / NPI_STATES_FILE, {"1234567890": {"npi": "1234567890", "state": "TX"}})
        directory = load_provider_directory(empty_data_dir)
        assert directory["1234567890"]["state"] == "TX"

    def test_missing_files_warn(self, empty_data_dir, caplog):
        with caplog.at_level("WARNING", logger="medicaid_rollup.enrichment"):
            assert load_provider_directory(empty_data_dir) == {}
            assert load_procedure_descriptions(empty_data_dir) == {}
        messages = [r.getMessage() for r in caplog.records]
        assert any("No NPI state mapping" in m for m in messages)
        assert any("No procedure descriptions" in m for m in messages)


class TestProcedureDescriptions:

    def test_short_then_long_then_manual(self, data_dir):
        descriptions = load_procedure_descriptions(data_dir)
        assert descriptions == {
            "99213": "Office visit est low",
            "T1019": "Personal care services per 15 minutes",
            "J1234": "Manual J-code",
        }


# ============================================================================
# API lookups
# ============================================================================

class TestNpiLookup:

    def test_organization(self):
        session = FakeSession({"1111111111": npi_payload("TX", "AUSTIN", org="ACME HOME CARE")})
        result = lookup_npi(session, "1111111111")
        assert result == {"npi": "1111111111", "state": "TX", "city": "AUSTIN", "name": "ACME HOME CARE"}
        assert session.calls == [(NPPES_API_URL, "1111111111")]

    def test_individual_name(self):
        session = FakeSession({"2222222222": npi_payload("OH", "DAYTON", first="JANE", last="DOE")})
        assert lookup_npi(session, "2222222222")["name"] == "JANE DOE"

    def test_no_results(self):
        session = FakeSession({"3333333333": {"result_count": 0, "results": []}})
        assert lookup_npi(session, "3333333333") is None

    def test_network_error_is_not_fatal(self, caplog):
        session = FakeSession({"4444444444": requests.ConnectionError("refused")})
        with caplog.at_level("WARNING", logger="medicaid_rollup.lookups"):
            assert lookup_npi(session, "4444444444") is None
        assert "4444444444" in caplog.text

    def test_http_error_is_not_fatal(self):
        assert lookup_npi(FakeSession({}), "5555555555") is None


class TestHcpcsLookup:

    def test_exact_match(self):
        session = FakeSession({"99213": [1, ["99213"], None, [["99213", "Office visit", "Office or other"]]]})
        assert lookup_hcpcs(session, "99213") == {
            "code": "99213", "shortDesc": "Office visit", "longDesc": "Office or other",
        }

    def test_non_exact_match_ignored(self):
        session = FakeSession({"9921": [1, ["99214"], None, [["99214", "Other visit", "Other"]]]})
        assert lookup_hcpcs(session, "9921") == {"code": "9921", "shortDesc": None, "longDesc": None}

    def test_error_returns_empty_record(self):
        session = FakeSession({"T1019": requests.Timeout("slow")})
        assert lookup_hcpcs(session, "T1019")["shortDesc"] is None


class TestResumableLookups:

    def test_npi_lookup_resumes(self, empty_data_dir):
        write_json(empty_data_dir / TABLE_FILES["providers"],
                   [{"npi": "1000000001"}, {"npi": "1000000002"}, {"npi": "1000000003"}])
        write_json(empty_data_dir / NPI_STATES_FILE,
                   [{"npi": "1000000001", "state": "NY", "city": "ALBANY", "name": "DONE"}])
        session = FakeSession({
            "1000000002": npi_payload("CA", "FRESNO", org="NEW ORG"),
            "1000000003": {"results": []},
        })

        results = lookup_npi_states(empty_data_dir, session=session, delay=0, save_every=1)

        assert [key for _, key in session.calls] == ["1000000002", "1000000003"]
        assert set(results) == {"1000000001", "1000000002"}
        saved = json.loads((empty_data_dir / NPI_STATES_FILE).read_text())
        assert {entry["npi"]: entry["state"] for entry in saved} == {
            "1000000001": "NY", "1000000002": "CA",
        }

    def test_nothing_to_do(self, empty_data_dir):
        write_json(empty_data_dir / TABLE_FILES["providers"], [{"npi": "1000000001"}])
        write_json(empty_data_dir / NPI_STATES_FILE, [{"npi": "1000000001", "state": "NY"}])
        session = FakeSession({})
        results = lookup_npi_states(empty_data_dir, session=session, delay=0)
        assert session.calls == []
        assert set(results) == {"1000000001"}

    def test_hcpcs_lookup_keeps_misses(self, empty_data_dir):
        write_json(empty_data_dir / TABLE_FILES["procedures"],
                   [{"hcpcsCode": "99213"}, {"hcpcsCode": "ZZZZZ"}])
        session = FakeSession({"99213": [1, ["99213"], None, [["99213", "Office visit", "Long"]]]})

        lookup_hcpcs_descriptions(empty_data_dir, session=session, delay=0)

        saved = json.loads((empty_data_dir / HCPCS_DESCRIPTIONS_FILE).read_text())
        assert [(e["code"], e["shortDesc"]) for e in saved] == [("99213", "Office visit"), ("ZZZZZ", None)]
        # A rerun finds both codes already looked up
        rerun = FakeSession({})
        lookup_hcpcs_descriptions(empty_data_dir, session=rerun, delay=0)
        assert rerun.calls == []

    def test_requires_process_output(self, empty_data_dir):
        with pytest.raises(FileNotFoundError):
            lookup_npi_states(empty_data_dir, session=FakeSession({}), delay=0)
        with pytest.raises(FileNotFoundError):
            lookup_hcpcs_descriptions(empty_data_dir, session=FakeSession({}), delay=0)


# ============================================================================
# NPPES bulk extract
# ============================================================================

NPPES_HEADER = [
    "NPI",
    "Entity Type Code",
    "Replacement NPI",
    "Provider Organization Name (Legal Business Name)",
    "Provider Last Name (Legal Name)",
    "Provider First Name",
    "Provider Business Practice Location Address City Name",
    "Provider Business Practice Location Address State Name",
    "Provider Business Practice Location Address Postal Code",
]


def nppes_line(values):
    return ",".join(f'"{v}"' for v in values)


@pytest.fixture
def nppes_files(tmp_path):
    registry = tmp_path / "npidata_pfile_20240101-20240107.csv"
    rows = [
        ["1000000001", "2", "", "MIXED CLINIC, INC", "", "", "ALBANY", "NY", "122071234"],
        ["1000000002", "1", "", "", "SMITH", "ANNA", "FRESNO", "CA", "93701"],
        ["1000000003", "1", "", "", "", "", "", "", ""],
        ["1999999999", "1", "", "", "NOT", "BILLING", "MIAMI", "FL", "33101"],
    ]
    registry.write_text("\n".join([nppes_line(NPPES_HEADER)] + [nppes_line(r) for r in rows]) + "\n")

    npi_list = tmp_path / "unique-billing-npis.txt"
    npi_list.write_text("1000000001\n1000000002\n1000000003\nnot-an-npi\n123\n")

    centroids = tmp_path / "zip-centroids.json"
    write_json(centroids, {"12207": {"lat": 42.65, "lng": -73.75}})
    return registry, npi_list, centroids


class TestNppesExtract:

    def test_extract_matches_targets(self, nppes_files, tmp_path):
        registry, npi_list, centroids = nppes_files
        output = tmp_path / "npi-lookup-full.json"

        results = extract_nppes(registry, npi_list, output, zip_centroids_path=str(centroids))

        assert set(results) == {"1000000001", "1000000002"}
        assert results["1000000001"] == {
            "state": "NY", "name": "MIXED CLINIC, INC", "city": "ALBANY",
            "zip": "12207", "lat": 42.65, "lng": -73.75,
        }
        assert results["1000000002"]["name"] == "ANNA SMITH"
        assert results["1000000002"]["lat"] is None
        assert json.loads(output.read_text()) == results

    def test_extract_without_centroids(self, nppes_files, tmp_path, caplog):
        registry, npi_list, _ = nppes_files
        with caplog.at_level("WARNING", logger="medicaid_rollup.nppes"):
            results = extract_nppes(registry, npi_list, tmp_path / "out.json")
        assert results["1000000001"]["lat"] is None
        assert "zip-centroids.json not found" in caplog.text

    def test_missing_registry(self, nppes_files, tmp_path):
        _, npi_list, _ = nppes_files
        with pytest.raises(FileNotFoundError):
            extract_nppes(tmp_path / "missing.csv", npi_list, tmp_path / "out.json")

    def test_empty_target_list(self, nppes_files, tmp_path):
        registry, _, _ = nppes_files
        empty = tmp_path / "empty.txt"
        empty.write_text("\n")
        with pytest.raises(ValueError):
            extract_nppes(registry, empty, tmp_path / "out.json")

    def test_target_list_filters_invalid_ids(self, nppes_files):
        _, npi_list, _ = nppes_files
        assert load_target_npis(npi_list) == ["1000000001", "1000000002", "1000000003"]

    @pytest.mark.parametrize("entity,org,first,last,expected", [
        ("2", "ACME", "", "", "ACME"),
        ("1", "", "JANE", "DOE", "JANE DOE"),
        ("1", "", "", "DOE", "DOE"),
        ("1", "", "", "", ""),
    ])
    def test_provider_name(self, entity, org, first, last, expected):
        assert provider_name(entity, org, first, last) == expected

    def test_normalize_zip(self):
        assert normalize_zip("12207-1234") == "12207"
        assert normalize_zip(None) == ""
