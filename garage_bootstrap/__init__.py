"""
Garage Bootstrap - bootstraps a single-node Garage S3 cluster.

This package provides utilities for:
- Waiting for the Garage admin API to become ready
- Assigning the single-node cluster layout
- Importing the configured access key
- Declarative bucket creation with public/private website access
"""

__version__ = "0.2.0"
