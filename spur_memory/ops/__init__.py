"""Operational tooling for memory graph databases."""
