"""
Report Normalization

Raw scraper payload → canonical report graph.
"""
from .normalizer import ReportNormalizer, normalize
from .payload import PayloadNode, strip_html, truncate_date

__all__ = [
    "ReportNormalizer",
    "normalize",
    "PayloadNode",
    "strip_html",
    "truncate_date",
]
