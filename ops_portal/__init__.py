"""Ops Portal — authorization, approval workflow and leave ledger services."""
