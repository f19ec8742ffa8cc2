"""Builders for driver jobs and their supporting objects."""
