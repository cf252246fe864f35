"""Replicate an AMI across regions and accounts and retire its old generations."""

__version__ = "0.1.0"
