"""Output module for rendering export files."""

from .csv_export import export_filename, feedback_rows_to_csv, generate_csv

__all__ = ["export_filename", "feedback_rows_to_csv", "generate_csv"]
