"""Utility functions for the Machine Provision Operator."""
