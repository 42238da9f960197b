"""Bib number recognition: preprocessing, regions, OCR fallback and aggregation."""
