"""Runnable examples for the icpcore package."""
