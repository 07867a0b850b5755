"""Application services for ReportQL."""
