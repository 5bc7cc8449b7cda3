"""Tabitha command-line interface."""
