"""sheetguard: guardrail pipeline between model output and spreadsheet writes."""

__version__ = "0.3.0"
