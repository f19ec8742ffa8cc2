"""Machine Provision Operator: provisions infrastructure machines through driver jobs."""

__version__ = "0.1.0"
