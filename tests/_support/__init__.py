"""Shared helpers for bootpack tests."""
