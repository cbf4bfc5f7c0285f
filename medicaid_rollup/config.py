"""Pipeline configuration: default paths, thresholds and caps."""

from pathlib import Path

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
TOOL_VERSION = "1.0.0"
PROJECT_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_DIR / "data"
CSV_PATH = PROJECT_DIR / "medicaid-provider-spending.csv"
DATABASE_PATH = DATA_DIR / "medicaid.duckdb"

# Rows with month < CUTOFF_MONTH count as the early period.
CUTOFF_MONTH = "2021-07"
MIN_FIELDS = 7
PROGRESS_EVERY = 10_000_000

TOP_PROCEDURES = 200
TOP_PROVIDERS = 10_000
TOP_MONTHLY_PROVIDERS = 1_000
TOP_MONTHLY_PROCEDURES = 100
PROVIDERS_PER_PROCEDURE = 50
SAMPLE_CAP = 10_000

OUTLIER_MIN_CLAIMS = 100
OUTLIER_MIN_PAID = 10_000.0
OUTLIER_HIGH_INDEX = 2.0
OUTLIER_LOW_INDEX = 0.5
MAX_OUTLIERS = 5_000

# Side files and outputs (all relative to the data directory)
NPI_LOOKUP_FULL_FILE = "npi-lookup-full.json"
NPI_STATES_FILE = "npi-states.json"
HCPCS_DESCRIPTIONS_FILE = "hcpcs-descriptions.json"
CPT_MANUAL_FILE = "cpt-descriptions-manual.json"
ZIP_CENTROIDS_FILE = "zip-centroids.json"
UNIQUE_NPIS_FILE = "unique-billing-npis.txt"

# External APIs
NPPES_API_URL = "https://npiregistry.cms.hhs.gov/api/"
NLM_HCPCS_API_URL = "https://clinicaltables.nlm.nih.gov/api/hcpcs/v3/search"
LOOKUP_DELAY_SECONDS = 0.1
LOOKUP_SAVE_EVERY = 100
LOOKUP_TIMEOUT = 15

INSERT_BATCH_SIZE = 500


class PipelineConfig:
    """Run-time knobs for one pipeline run."""

    def __init__(
        self,
        cutoff_month: str = CUTOFF_MONTH,
        top_procedures: int = TOP_PROCEDURES,
        top_providers: int = TOP_PROVIDERS,
        top_monthly_providers: int = TOP_MONTHLY_PROVIDERS,
        top_monthly_procedures: int = TOP_MONTHLY_PROCEDURES,
        providers_per_procedure: int = PROVIDERS_PER_PROCEDURE,
        sample_cap: int = SAMPLE_CAP,
        max_outliers: int = MAX_OUTLIERS,
        progress_every: int = PROGRESS_EVERY,
        write_npi_list: bool = False,
    ):
        if top_monthly_providers > top_providers:
            raise ValueError("top_monthly_providers must not exceed top_providers")
        self.cutoff_month = cutoff_month
        self.top_procedures = top_procedures
        self.top_providers = top_providers
        self.top_monthly_providers = top_monthly_providers
        self.top_monthly_procedures = top_monthly_procedures
        self.providers_per_procedure = providers_per_procedure
        self.sample_cap = sample_cap
        self.max_outliers = max_outliers
        self.progress_every = progress_every
        self.write_npi_list = write_npi_list
