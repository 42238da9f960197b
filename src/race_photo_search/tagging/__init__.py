"""Bib-to-runner matching and auto-tag maintenance."""
