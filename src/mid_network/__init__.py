"""
mid_network: alignment, distances and cross-experiment networks of mass isotopomer distributions.
"""

from .alignment import align_mids
from .distance import DistanceConfig, DistanceEngine, DistanceMeasure, DistanceNormalization, mid_distance
from .distance_matrix import DistanceKind, DistanceMatrix, DistanceMatrixBuilder
from .errors import InvalidInputError, LibraryLoadError, MidNetworkError
from .matching import CompoundMatcher, MatchConfig, identify_nodes
from .model import (
    Dataset,
    DatasetSettings,
    IonSelection,
    IsotopomerDistribution,
    LabeledCompoundObservation,
    M0Mode,
    NetworkNode,
)
from .network import Edge, GraphFilter, LabelingNetwork
from .variation import max_isotopomer_sd

__version__ = "0.1.0"

__all__ = [
    "align_mids",
    "mid_distance",
    "DistanceConfig",
    "DistanceEngine",
    "DistanceMeasure",
    "DistanceNormalization",
    "DistanceKind",
    "DistanceMatrix",
    "DistanceMatrixBuilder",
    "CompoundMatcher",
    "MatchConfig",
    "identify_nodes",
    "Dataset",
    "DatasetSettings",
    "IonSelection",
    "IsotopomerDistribution",
    "LabeledCompoundObservation",
    "M0Mode",
    "NetworkNode",
    "Edge",
    "GraphFilter",
    "LabelingNetwork",
    "max_isotopomer_sd",
    "MidNetworkError",
    "InvalidInputError",
    "LibraryLoadError",
    "__version__",
]
