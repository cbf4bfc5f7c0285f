#!/usr/bin/env python3
"""
Medicaid Provider Spending Rollup
=================================
Compresses the ~227M-row CMS Medicaid provider spending CSV into a fixed set
of bounded JSON tables for the exploration dashboard, in two streaming passes:

1. Pass 1 builds lightweight totals by procedure, provider and month.
2. Top-K procedures and providers are selected by total paid.
3. Pass 2 re-reads the file and builds detail only for those entities.

Enrichment side steps (NPPES bulk extract, NPPES API, NLM HCPCS API) and the
bulk load into DuckDB are separate subcommands.

Usage:
    python process_spending.py process [--csv PATH] [--data-dir DIR]
    python process_spending.py lookup-npis
    python process_spending.py lookup-hcpcs
    python process_spending.py extract-nppes --nppes data/nppes.zip
    python process_spending.py load [--database data/medicaid.duckdb]
"""

import argparse
import logging
import os
import sys
import time

from medicaid_rollup.config import (
    CSV_PATH,
    CUTOFF_MONTH,
    DATA_DIR,
    DATABASE_PATH,
    INSERT_BATCH_SIZE,
    LOOKUP_DELAY_SECONDS,
    NPI_LOOKUP_FULL_FILE,
    PROGRESS_EVERY,
    TOOL_VERSION,
    UNIQUE_NPIS_FILE,
    ZIP_CENTROIDS_FILE,
    PipelineConfig,
)
from medicaid_rollup.loader import load_tables
from medicaid_rollup.lookups import lookup_hcpcs_descriptions, lookup_npi_states
from medicaid_rollup.nppes import extract_nppes
from medicaid_rollup.pipeline import run_pipeline

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("medicaid_rollup")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

def cmd_process(args) -> int:
    config = PipelineConfig(
        cutoff_month=args.cutoff,
        progress_every=args.progress_every,
        write_npi_list=args.write_npi_list,
    )
    output_dir = args.output_dir or args.data_dir
    log.info("Input: %s | Output: %s | Cutoff: %s", args.csv, output_dir, config.cutoff_month)

    summary = run_pipeline(args.csv, args.data_dir, output_dir, config)

    log.info("=" * 70)
    log.info("PROCESSING COMPLETE")
    log.info("  Rows processed:   %s", f"{summary.rows:,}")
    log.info("  Malformed rows:   %s", f"{summary.skipped:,}")
    for filename, count in summary.table_sizes.items():
        log.info("  %-28s %s rows", filename, f"{count:,}")
    log.info("=" * 70)
    log.info("Top 10 procedures by total spending:")
    for i, (code, category, paid) in enumerate(summary.top_procedures, start=1):
        log.info("  %2d. %-8s %-22s $%.2fB", i, code, category, paid / 1e9)
    return 0


def cmd_load(args) -> int:
    counts = load_tables(args.data_dir, str(args.database), args.memory_limit, args.batch_size)
    log.info("=== Load complete ===")
    for table, count in counts.items():
        log.info("  %-22s %s", table, f"{count:,}")
    return 0


def cmd_lookup_npis(args) -> int:
    results = lookup_npi_states(args.data_dir, delay=args.delay)
    with_state = sum(1 for r in results.values() if r.get("state"))
    log.info("Done. %s total NPIs, %s with state.", f"{len(results):,}", f"{with_state:,}")
    return 0


def cmd_lookup_hcpcs(args) -> int:
    results = lookup_hcpcs_descriptions(args.data_dir, delay=args.delay)
    with_desc = sum(1 for r in results.values() if r.get("shortDesc"))
    log.info("Done. %s total codes, %s with descriptions.", f"{len(results):,}", f"{with_desc:,}")
    return 0


def cmd_extract_nppes(args) -> int:
    data_dir = args.data_dir
    extract_nppes(
        args.nppes,
        args.npi_list or os.path.join(data_dir, UNIQUE_NPIS_FILE),
        args.output or os.path.join(data_dir, NPI_LOOKUP_FULL_FILE),
        zip_centroids_path=os.path.join(data_dir, ZIP_CENTROIDS_FILE),
        memory_limit=args.memory_limit,
    )
    return 0


# ---------------------------------------------------------------------------
# Main Execution
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Medicaid Provider Spending Rollup")
    parser.add_argument("--data-dir", default=str(DATA_DIR),
                        help="Directory holding side files and JSON tables (default: data/)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("process", help="Run the two-pass rollup")
    p.add_argument("--csv", default=str(CSV_PATH), help="Raw claims CSV (optionally .gz)")
    p.add_argument("--output-dir", default=None,
                   help="Where to publish tables (default: --data-dir)")
    p.add_argument("--cutoff", default=CUTOFF_MONTH,
                   help=f"First month of the late period (default: {CUTOFF_MONTH})")
    p.add_argument("--progress-every", type=int, default=PROGRESS_EVERY,
                   help="Log progress every N rows")
    p.add_argument("--write-npi-list", action="store_true",
                   help=f"Also write {UNIQUE_NPIS_FILE} for the NPPES extract")
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("load", help="Bulk-load the JSON tables into DuckDB")
    p.add_argument("--database", default=str(DATABASE_PATH), help="DuckDB database file")
    p.add_argument("--memory-limit", default="2GB", help="DuckDB memory limit (default: 2GB)")
    p.add_argument("--batch-size", type=int, default=INSERT_BATCH_SIZE, help="Rows per INSERT")
    p.set_defaults(func=cmd_load)

    p = sub.add_parser("lookup-npis", help="Look up provider states via the NPPES API")
    p.add_argument("--delay", type=float, default=LOOKUP_DELAY_SECONDS, help="Seconds between requests")
    p.set_defaults(func=cmd_lookup_npis)

    p = sub.add_parser("lookup-hcpcs", help="Look up HCPCS descriptions via the NLM API")
    p.add_argument("--delay", type=float, default=LOOKUP_DELAY_SECONDS, help="Seconds between requests")
    p.set_defaults(func=cmd_lookup_hcpcs)

    p = sub.add_parser("extract-nppes", help="Cross-reference the NPPES bulk file")
    p.add_argument("--nppes", required=True, help="npidata CSV or NPPES zip")
    p.add_argument("--npi-list", default=None, help=f"Target NPI list (default: {UNIQUE_NPIS_FILE})")
    p.add_argument("--output", default=None, help=f"Output path (default: {NPI_LOOKUP_FULL_FILE})")
    p.add_argument("--memory-limit", default="1GB", help="DuckDB memory limit (default: 1GB)")
    p.set_defaults(func=cmd_extract_nppes)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    start_time = time.time()
    log.info("Medicaid Provider Spending Rollup v%s (%s)", TOOL_VERSION, args.command)
    try:
        status = args.func(args)
    except FileNotFoundError as e:
        log.error("%s", e)
        return 1
    except Exception as e:
        log.error("%s failed: %s", args.command, e, exc_info=True)
        return 1
    log.info("Time elapsed: %.1f seconds", time.time() - start_time)
    return status


if __name__ == "__main__":
    sys.exit(main())
