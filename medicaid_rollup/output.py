"""JSON snapshot writing.

Tables are staged next to their final path and only published (renamed into
place) once every table of the run was written, so an aborted run never
leaves truncated JSON that looks complete.
"""

import json
import logging
import os
import tempfile

log = logging.getLogger("medicaid_rollup.output")

# Logical table -> file name (the bulk-load contract)
TABLE_FILES = {
    "monthly_national": "monthly-national.json",
    "procedures": "procedure-summary.json",
    "providers": "provider-summary.json",
    "states": "state-summary.json",
    "procedure_monthly": "procedure-monthly.json",
    "provider_procedures": "provider-procedures.json",
    "provider_monthly": "provider-monthly.json",
    "state_monthly": "state-monthly.json",
    "state_procedures": "state-procedures.json",
    "outliers": "outliers.json",
}


def dump_json(data) -> str:
    """Compact, deterministic JSON text."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def write_atomic(path, text: str) -> None:
    """Write text to a temp file in the target directory, then rename it."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class TableWriter:
    """Stage tables as temp files, then publish them all at once.

    Usable as a context manager: leaving the block with an exception
    discards whatever was staged.
    """

    def __init__(self, output_dir):
        self.output_dir = str(output_dir)
        self.staged: list[tuple[str, str]] = []
        self.sizes: dict[str, int] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.discard()
        return False

    def stage(self, filename: str, rows) -> None:
        os.makedirs(self.output_dir, exist_ok=True)
        final_path = os.path.join(self.output_dir, filename)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{filename}.", suffix=".tmp", dir=self.output_dir)
        self.staged.append((tmp_path, final_path))
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(dump_json(rows))
            f.flush()
            os.fsync(f.fileno())
        self.sizes[filename] = len(rows)
        log.info("  %s: %s rows", filename, f"{len(rows):,}")

    def publish(self) -> dict[str, int]:
        """Rename every staged table into place.

        Renames are individually atomic but the set is not. If one fails, the
        directory mixes new and previous tables, so log exactly which is which
        before re-raising.
        """
        published = []
        for i, (tmp_path, final_path) in enumerate(self.staged):
            try:
                os.replace(tmp_path, final_path)
            except OSError:
                pending = [os.path.basename(final) for _, final in self.staged[i:]]
                log.error("Publish failed in %s: new tables %s, previous tables kept for %s",
                          self.output_dir, published or "none", pending)
                self.staged = self.staged[i:]
                self.discard()
                raise
            published.append(os.path.basename(final_path))
        self.staged = []
        log.info("Published %d tables to %s", len(self.sizes), self.output_dir)
        return dict(self.sizes)

    def discard(self) -> None:
        for tmp_path, _ in self.staged:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        self.staged = []


def read_table(output_dir, filename: str):
    """Load one emitted table, or None when it does not exist."""
    path = os.path.join(output_dir, filename)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
