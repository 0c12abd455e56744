"""Telco usage staging, reconciliation and billing pipeline."""
