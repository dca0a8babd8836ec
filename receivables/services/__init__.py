"""Receivables lifecycle services."""
