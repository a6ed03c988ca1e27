"""Payroll export pipeline: Fortnox sync, salary computation and bank files."""

__version__ = "0.3.0"
