"""Provisioning and teardown logic for infrastructure machines."""
