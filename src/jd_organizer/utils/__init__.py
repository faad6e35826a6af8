"""Utility functions for the file organizer."""
