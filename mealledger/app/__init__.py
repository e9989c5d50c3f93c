"""Meal allocation quota and claim ledger service."""
