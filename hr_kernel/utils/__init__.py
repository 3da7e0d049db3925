"""Shared utilities for the HR kernel."""
