"""Tender records, price studies and competitor prices."""
