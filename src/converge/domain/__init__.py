"""Reconciler domain: model, ports and the reconciliation stages."""
