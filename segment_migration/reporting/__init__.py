"""File exports and markdown reports for segmentation runs."""

from .exports import (
    EXPORT_FILENAMES,
    export_kpis_csv,
    export_migration_csv,
    export_run_csvs,
    export_run_summary_json,
    run_summary,
)
from .markdown import (
    format_kpi_table,
    format_migration_table,
    format_run_report,
    write_markdown_report,
)

__all__ = [
    "EXPORT_FILENAMES",
    "export_kpis_csv",
    "export_migration_csv",
    "export_run_csvs",
    "export_run_summary_json",
    "run_summary",
    "format_kpi_table",
    "format_migration_table",
    "format_run_report",
    "write_markdown_report",
]
