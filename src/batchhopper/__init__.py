"""Batch job coordinator for HTTP workers."""
