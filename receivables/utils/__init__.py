"""
Utility helpers for the Receivables Lifecycle Service.
"""
