"""Audit trail for reconcile outcomes."""
