"""Utilities package for the Cafe Cost Engine."""
