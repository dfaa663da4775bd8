"""Kopf operator reconciling Unit resources into their owned workloads."""
