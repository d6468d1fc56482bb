"""Synthetic data generation.

This package produces realistic-but-fake customer and line-item datasets to
exercise the segmentation pipeline without accessing production data.
"""

from .generator import (
    DEFAULT_CHANNELS,
    ScenarioConfig,
    SyntheticDataset,
    generate_customers,
    generate_dataset,
)

__all__ = [
    "DEFAULT_CHANNELS",
    "ScenarioConfig",
    "SyntheticDataset",
    "generate_customers",
    "generate_dataset",
]
