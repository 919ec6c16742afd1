"""Service layer exports.

Expose the projection, layout, similarity, clustering, and labelling services for easy importing.
"""

from .clustering import ClusterService
from .graph_builder import ConceptGraphBuilder
from .labeling import OpenAIService
from .projection import ProjectionService
from .radial import RadialLayoutService
from .similarity import SimilarityService

__all__ = [
    "ClusterService",
    "ConceptGraphBuilder",
    "OpenAIService",
    "ProjectionService",
    "RadialLayoutService",
    "SimilarityService",
]
