"""Ledger collaborator interface and in-process implementation."""
