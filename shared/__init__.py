"""Shared infrastructure for the MMTS builder."""
