"""Tests for the DuckDB bulk loader."""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import duckdb
import pytest

from medicaid_rollup.loader import SCHEMA, SURROGATE_KEY_TABLES, insert_batch, load_tables, recreate_tables
from medicaid_rollup.output import TABLE_FILES, read_table
from medicaid_rollup.pipeline import run_pipeline

from conftest import NPI_HIGH, NPI_VOLUME


@pytest.fixture
def tables_dir(sample_csv, data_dir, tmp_path):
    out = tmp_path / "out"
    run_pipeline(sample_csv, data_dir, out)
    return out


@pytest.fixture
def database(tmp_path):
    return str(tmp_path / "medicaid.duckdb")


def query(database, sql):
    con = duckdb.connect(database, read_only=True)
    try:
        return con.execute(sql).fetchall()
    finally:
        con.close()


class TestLoadTables:

    def test_row_counts_match_json(self, tables_dir, database):
        counts = load_tables(tables_dir, database)
        for table, filename in TABLE_FILES.items():
            expected = len(read_table(tables_dir, filename))
            assert counts[table] == expected
            assert query(database, f"SELECT COUNT(*) FROM {table}")[0][0] == expected

    def test_field_mapping_and_nulls(self, tables_dir, database):
        load_tables(tables_dir, database)
        rows = query(database, f"""
            SELECT state, name, total_paid, cost_per_claim_growth_pct
            FROM providers WHERE npi = '{NPI_HIGH}'
        """)
        assert rows == [("CA", "HIGH BILLING LLC", 60000.0, None)]
        assert query(database, f"SELECT state FROM providers WHERE npi = '{NPI_VOLUME}'") == [(None,)]
        assert query(database, "SELECT provider_count FROM monthly_national LIMIT 1") == [(None,)]

    def test_outlier_rows(self, tables_dir, database):
        load_tables(tables_dir, database)
        rows = query(database, "SELECT npi, outlier_type, cost_index FROM outliers ORDER BY id")
        assert rows == [(NPI_HIGH, "high", 8.0), ("1000000005", "low", 0.4)]

    def test_surrogate_ids_are_sequential(self, tables_dir, database):
        load_tables(tables_dir, database)
        for table in SURROGATE_KEY_TABLES:
            ids = [r[0] for r in query(database, f"SELECT id FROM {table} ORDER BY id")]
            assert ids == list(range(1, len(ids) + 1))

    def test_reload_replaces_contents(self, tables_dir, database):
        first = load_tables(tables_dir, database)
        second = load_tables(tables_dir, database)
        assert first == second
        ids = [r[0] for r in query(database, "SELECT id FROM provider_procedures ORDER BY id")]
        assert ids[0] == 1

    def test_missing_table_file_is_skipped(self, tables_dir, database):
        os.unlink(tables_dir / TABLE_FILES["outliers"])
        counts = load_tables(tables_dir, database)
        assert counts["outliers"] == 0
        assert counts["providers"] > 0
        assert query(database, "SELECT COUNT(*) FROM outliers")[0][0] == 0

    def test_small_batches(self, tables_dir, database):
        counts = load_tables(tables_dir, database, batch_size=2)
        assert counts["provider_procedures"] == 7


class TestInsertBatch:

    def test_unknown_fields_become_null(self):
        con = duckdb.connect(":memory:")
        try:
            recreate_tables(con)
            inserted = insert_batch(con, "state_procedures", [
                {"state": "NY", "hcpcsCode": "99213", "totalPaid": 1.0,
                 "totalClaims": 1, "totalBeneficiaries": 1},
            ])
            assert inserted == 1
            row = con.execute("SELECT id, avg_cost_per_claim, provider_count FROM state_procedures").fetchall()
            assert row == [(1, None, None)]
        finally:
            con.close()

    def test_schema_covers_every_table(self):
        assert set(SCHEMA) == set(TABLE_FILES)
