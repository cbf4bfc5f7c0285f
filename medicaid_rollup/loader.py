"""Bulk-load the emitted JSON tables into a DuckDB database."""

import logging

import duckdb

from medicaid_rollup.config import INSERT_BATCH_SIZE
from medicaid_rollup.output import TABLE_FILES, read_table

log = logging.getLogger("medicaid_rollup.loader")

# table -> [(column, sql type, json field)]; order is the insert order
SCHEMA = {
    "monthly_national": [
        ("month", "VARCHAR PRIMARY KEY", "month"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("provider_count", "INTEGER", "providerCount"),
        ("procedure_count", "INTEGER", "procedureCount"),
        ("avg_cost_per_claim", "DOUBLE", "avgCostPerClaim"),
        ("avg_cost_per_beneficiary", "DOUBLE", "avgCostPerBeneficiary"),
    ],
    "procedures": [
        ("hcpcs_code", "VARCHAR PRIMARY KEY", "hcpcsCode"),
        ("category", "VARCHAR NOT NULL", "category"),
        ("description", "VARCHAR", "description"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("provider_count", "INTEGER NOT NULL", "providerCount"),
        ("avg_cost_per_claim", "DOUBLE", "avgCostPerClaim"),
        ("median_cost_per_claim", "DOUBLE", "medianCostPerClaim"),
        ("avg_cost_per_beneficiary", "DOUBLE", "avgCostPerBeneficiary"),
        ("claims_per_beneficiary", "DOUBLE", "claimsPerBeneficiary"),
    ],
    "providers": [
        ("npi", "VARCHAR PRIMARY KEY", "npi"),
        ("name", "VARCHAR", "name"),
        ("state", "VARCHAR", "state"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("procedure_count", "INTEGER NOT NULL", "procedureCount"),
        ("avg_cost_per_claim", "DOUBLE", "avgCostPerClaim"),
        ("avg_cost_per_beneficiary", "DOUBLE", "avgCostPerBeneficiary"),
        ("top_procedure", "VARCHAR", "topProcedure"),
        ("top_procedure_paid", "DOUBLE", "topProcedurePaid"),
        ("spending_growth_pct", "DOUBLE", "spendingGrowthPct"),
        ("cost_per_claim_growth_pct", "DOUBLE", "costPerClaimGrowthPct"),
        ("volume_growth_pct", "DOUBLE", "volumeGrowthPct"),
        ("lat", "DOUBLE", "lat"),
        ("lng", "DOUBLE", "lng"),
    ],
    "states": [
        ("state", "VARCHAR PRIMARY KEY", "state"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("provider_count", "INTEGER NOT NULL", "providerCount"),
        ("procedure_count", "INTEGER NOT NULL", "procedureCount"),
        ("avg_cost_per_claim", "DOUBLE", "avgCostPerClaim"),
        ("avg_cost_per_beneficiary", "DOUBLE", "avgCostPerBeneficiary"),
        ("claims_per_beneficiary", "DOUBLE", "claimsPerBeneficiary"),
    ],
    "procedure_monthly": [
        ("hcpcs_code", "VARCHAR NOT NULL", "hcpcsCode"),
        ("month", "VARCHAR NOT NULL", "month"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("avg_cost_per_claim", "DOUBLE", "avgCostPerClaim"),
        ("avg_cost_per_beneficiary", "DOUBLE", "avgCostPerBeneficiary"),
        ("provider_count", "INTEGER", "providerCount"),
    ],
    "provider_procedures": [
        ("npi", "VARCHAR NOT NULL", "npi"),
        ("hcpcs_code", "VARCHAR NOT NULL", "hcpcsCode"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("cost_per_claim", "DOUBLE", "costPerClaim"),
        ("cost_per_beneficiary", "DOUBLE", "costPerBeneficiary"),
        ("procedure_median_cost_per_claim", "DOUBLE", "procedureMedianCostPerClaim"),
        ("cost_index", "DOUBLE", "costIndex"),
        ("state", "VARCHAR", "state"),
        ("provider_name", "VARCHAR", "providerName"),
        ("rn", "INTEGER", "rn"),
    ],
    "provider_monthly": [
        ("npi", "VARCHAR NOT NULL", "npi"),
        ("month", "VARCHAR NOT NULL", "month"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("avg_cost_per_claim", "DOUBLE", "avgCostPerClaim"),
        ("procedure_count", "INTEGER", "procedureCount"),
    ],
    "state_monthly": [
        ("state", "VARCHAR NOT NULL", "state"),
        ("month", "VARCHAR NOT NULL", "month"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("avg_cost_per_claim", "DOUBLE", "avgCostPerClaim"),
        ("avg_cost_per_beneficiary", "DOUBLE", "avgCostPerBeneficiary"),
    ],
    "state_procedures": [
        ("state", "VARCHAR NOT NULL", "state"),
        ("hcpcs_code", "VARCHAR NOT NULL", "hcpcsCode"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("avg_cost_per_claim", "DOUBLE", "avgCostPerClaim"),
        ("provider_count", "INTEGER", "providerCount"),
    ],
    "outliers": [
        ("npi", "VARCHAR NOT NULL", "npi"),
        ("state", "VARCHAR", "state"),
        ("hcpcs_code", "VARCHAR NOT NULL", "hcpcsCode"),
        ("total_paid", "DOUBLE NOT NULL", "totalPaid"),
        ("total_claims", "BIGINT NOT NULL", "totalClaims"),
        ("total_beneficiaries", "BIGINT NOT NULL", "totalBeneficiaries"),
        ("cost_per_claim", "DOUBLE", "costPerClaim"),
        ("procedure_median", "DOUBLE", "procedureMedian"),
        ("cost_index", "DOUBLE", "costIndex"),
        ("outlier_type", "VARCHAR", "outlierType"),
        ("provider_name", "VARCHAR", "providerName"),
        ("hcpcs_description", "VARCHAR", "hcpcsDescription"),
    ],
}

# Detail tables have no natural key and get a sequence-backed id
SURROGATE_KEY_TABLES = {
    "procedure_monthly", "provider_procedures", "provider_monthly",
    "state_monthly", "state_procedures", "outliers",
}

INDEXES = [
    ("idx_procedures_category", "procedures", "category"),
    ("idx_procedures_paid", "procedures", "total_paid"),
    ("idx_providers_state", "providers", "state"),
    ("idx_providers_paid", "providers", "total_paid"),
    ("idx_proc_monthly_code", "procedure_monthly", "hcpcs_code"),
    ("idx_proc_monthly_code_month", "procedure_monthly", "hcpcs_code, month"),
    ("idx_pp_code", "provider_procedures", "hcpcs_code"),
    ("idx_pp_npi", "provider_procedures", "npi"),
    ("idx_state_monthly_state", "state_monthly", "state"),
    ("idx_sp_state", "state_procedures", "state"),
    ("idx_pm_npi", "provider_monthly", "npi"),
    ("idx_outliers_code", "outliers", "hcpcs_code"),
    ("idx_outliers_npi", "outliers", "npi"),
    ("idx_outliers_index", "outliers", "cost_index"),
]


def get_connection(database: str, memory_limit: str = "2GB") -> duckdb.DuckDBPyConnection:
    """Open the target database with a memory ceiling."""
    con = duckdb.connect(database)
    con.execute(f"SET memory_limit = '{memory_limit}'")
    con.execute("SET threads = 2")
    return con


def recreate_tables(con: duckdb.DuckDBPyConnection) -> None:
    """Drop and recreate every table; each load is a full snapshot."""
    for table, columns in SCHEMA.items():
        con.execute(f"DROP TABLE IF EXISTS {table}")
        con.execute(f"DROP SEQUENCE IF EXISTS seq_{table}")
        cols = [f"{name} {sql_type}" for name, sql_type, _ in columns]
        if table in SURROGATE_KEY_TABLES:
            con.execute(f"CREATE SEQUENCE seq_{table} START 1")
            cols.insert(0, f"id BIGINT PRIMARY KEY DEFAULT nextval('seq_{table}')")
        con.execute(f"CREATE TABLE {table} ({', '.join(cols)})")


def insert_batch(con: duckdb.DuckDBPyConnection, table: str, rows: list[dict],
                 batch_size: int = INSERT_BATCH_SIZE) -> int:
    """Insert rows with one multi-row VALUES statement per batch."""
    columns = SCHEMA[table]
    names = ", ".join(name for name, _, _ in columns)
    placeholder = "(" + ", ".join("?" for _ in columns) + ")"
    inserted = 0
    for i in range(0, len(rows), batch_size):
        batch = rows[i:i + batch_size]
        params = []
        for row in batch:
            params.extend(row.get(field) for _, _, field in columns)
        values = ", ".join(placeholder for _ in batch)
        con.execute(f"INSERT INTO {table} ({names}) VALUES {values}", params)
        inserted += len(batch)
        if inserted % 10_000 < batch_size or inserted == len(rows):
            log.info("    Inserted %s / %s", f"{inserted:,}", f"{len(rows):,}")
    return inserted


def create_indexes(con: duckdb.DuckDBPyConnection) -> None:
    for name, table, columns in INDEXES:
        con.execute(f"CREATE INDEX IF NOT EXISTS {name} ON {table}({columns})")


def load_tables(data_dir, database: str, memory_limit: str = "2GB",
                batch_size: int = INSERT_BATCH_SIZE) -> dict[str, int]:
    """Replace the database contents with the JSON tables in data_dir."""
    log.info("Connecting to %s...", database)
    con = get_connection(database, memory_limit)
    try:
        log.info("Recreating tables...")
        recreate_tables(con)

        counts = {}
        for table, filename in TABLE_FILES.items():
            rows = read_table(data_dir, filename)
            if rows is None:
                log.info("  Skipping %s (not found)", filename)
                counts[table] = 0
                continue
            log.info("  %s: %s rows", table, f"{len(rows):,}")
            con.execute("BEGIN TRANSACTION")
            try:
                counts[table] = insert_batch(con, table, rows, batch_size)
                con.execute("COMMIT")
            except Exception:
                con.execute("ROLLBACK")
                raise

        log.info("Creating indexes...")
        create_indexes(con)
        return counts
    finally:
        con.close()
