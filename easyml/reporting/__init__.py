"""Reporting utilities for easyml build runs."""

from .artifacts import write_manifest
from .metrics import CsvSink, JsonlSink
from .summary import write_summary

__all__ = ["write_manifest", "CsvSink", "JsonlSink", "write_summary"]
