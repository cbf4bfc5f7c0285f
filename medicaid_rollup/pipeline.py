"""Two-pass rollup of the raw claims file into the bulk-load tables."""

import logging
import os
import time

from medicaid_rollup.config import UNIQUE_NPIS_FILE, PipelineConfig
from medicaid_rollup.detail import run_pass2
from medicaid_rollup.enrichment import load_procedure_descriptions, load_provider_directory
from medicaid_rollup.output import TABLE_FILES, TableWriter, write_atomic
from medicaid_rollup.reader import ensure_source
from medicaid_rollup.tables import (
    build_monthly_national,
    build_outliers,
    build_procedure_monthly,
    build_procedure_summary,
    build_provider_monthly,
    build_provider_procedures,
    build_provider_summary,
    build_state_monthly,
    build_state_procedures,
    build_state_summary,
    procedure_medians,
    procedure_provider_counts,
    top_procedure_by_provider,
)
from medicaid_rollup.topk import select_top_sets
from medicaid_rollup.totals import run_pass1

log = logging.getLogger("medicaid_rollup.pipeline")


class RunSummary:
    def __init__(self, rows: int, skipped: int, table_sizes: dict, top_procedures: list):
        self.rows = rows
        self.skipped = skipped
        self.table_sizes = table_sizes
        # (code, category, total paid) for the largest procedures
        self.top_procedures = top_procedures


def write_npi_list(providers: dict, data_dir) -> str:
    """Write every billing provider id, one per line (input to the NPPES extract)."""
    path = os.path.join(data_dir, UNIQUE_NPIS_FILE)
    write_atomic(path, "".join(f"{npi}\n" for npi in sorted(providers)))
    log.info("Wrote %s provider ids to %s", f"{len(providers):,}", path)
    return path


def run_pipeline(csv_path, data_dir, output_dir, config: PipelineConfig = None) -> RunSummary:
    """Run Pass 1, Top-K selection, Pass 2 and the table builders.

    Nothing is published unless every table was staged successfully.
    """
    config = config or PipelineConfig()
    start = time.time()
    ensure_source(csv_path)

    directory = load_provider_directory(data_dir)
    descriptions = load_procedure_descriptions(data_dir)

    pass1 = run_pass1(csv_path, config.cutoff_month, config.progress_every)
    if config.write_npi_list:
        write_npi_list(pass1.providers, data_dir)

    with TableWriter(output_dir) as writer:
        log.info("--- Building output tables ---")
        writer.stage(TABLE_FILES["monthly_national"], build_monthly_national(pass1.months))
        # Month totals are not needed past this point
        pass1.months = None

        top_sets = select_top_sets(
            pass1.procedures, pass1.providers,
            config.top_procedures, config.top_providers, config.top_monthly_providers,
        )

        pass2 = run_pass2(csv_path, top_sets, config.sample_cap, config.progress_every)

        medians = procedure_medians(pass2.cost_samples)
        pass2.cost_samples = None

        procedure_summary = build_procedure_summary(
            pass1.procedures, top_sets.procedure_ranking, medians,
            procedure_provider_counts(pass2.provider_procedures, top_sets.procedures),
            descriptions,
        )
        writer.stage(TABLE_FILES["procedures"], procedure_summary)

        provider_summary = build_provider_summary(
            pass1.providers, top_sets.provider_ranking, pass2.provider_procedure_sets,
            top_procedure_by_provider(pass2.provider_procedures, top_sets.providers),
            directory, config.top_providers,
        )
        writer.stage(TABLE_FILES["providers"], provider_summary)
        pass1.providers = None
        pass2.provider_procedure_sets = None

        writer.stage(TABLE_FILES["states"],
                     build_state_summary(provider_summary, pass2.provider_procedures))
        writer.stage(TABLE_FILES["procedure_monthly"],
                     build_procedure_monthly(pass2.procedure_months, top_sets.procedure_ranking,
                                             config.top_monthly_procedures))
        pass2.procedure_months = None

        writer.stage(TABLE_FILES["provider_procedures"],
                     build_provider_procedures(pass2.provider_procedures, top_sets.procedure_ranking,
                                               top_sets.procedures, medians, directory,
                                               config.providers_per_procedure))
        writer.stage(TABLE_FILES["provider_monthly"], build_provider_monthly(pass2.provider_months))
        writer.stage(TABLE_FILES["state_monthly"],
                     build_state_monthly(pass2.provider_months, directory))
        writer.stage(TABLE_FILES["state_procedures"],
                     build_state_procedures(pass2.provider_procedures, directory))
        writer.stage(TABLE_FILES["outliers"],
                     build_outliers(pass2.provider_procedures, medians, directory,
                                    descriptions, config.max_outliers))
        sizes = writer.publish()

    log.info("Pipeline finished in %.1f seconds", time.time() - start)
    top = [(row["hcpcsCode"], row["category"], row["totalPaid"]) for row in procedure_summary[:10]]
    return RunSummary(pass1.rows, pass1.skipped, sizes, top)
