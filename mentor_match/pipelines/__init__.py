"""Matching pipelines.

Scoring runs entirely in memory over directory snapshots; approval is the
only write path.
"""
