"""Exporter SPI and implementations."""

from .base import BaseExporter
from .csv_report import CsvReportExporter

__all__ = ["BaseExporter", "CsvReportExporter"]
