"""Shared constants for StageCore collaborators."""
