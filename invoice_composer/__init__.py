"""
Invoice Composer

Drives the multi-step invoice workflow: customer and vehicle selection,
stock-bounded line items, deterministic totals, and draft persistence that
never loses or duplicates work in progress.
"""

__version__ = "0.1.0"
