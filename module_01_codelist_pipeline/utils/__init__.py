"""Shared helpers for the code list pipeline."""
