"""Core organizer modules: matching, rules and file operations."""
