"""Multi-period customer segmentation and migration engine.

Computes window-level RFM metrics and scores from transaction history,
classifies every active customer into a named segment per window, and tracks
how customers migrate between segments across consecutive windows.
"""

from .errors import (
    ConfigurationError,
    DataContractError,
    InvariantError,
    SegmentationError,
)
from .pipeline import SegmentationConfig, SegmentationRun, run_segmentation

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "DataContractError",
    "InvariantError",
    "SegmentationError",
    "SegmentationConfig",
    "SegmentationRun",
    "run_segmentation",
    "__version__",
]
