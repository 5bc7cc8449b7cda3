"""Tabitha: conversational query-to-action pipeline for browser tabs."""
