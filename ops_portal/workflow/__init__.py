"""Approval workflow engine shared by leave and task approvals."""
