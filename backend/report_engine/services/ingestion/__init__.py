"""
Scraper ingestion.
"""
from .report_ingestion import ReportIngestionService

__all__ = ["ReportIngestionService"]
