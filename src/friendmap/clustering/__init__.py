"""
Clustering module for map markers.
Groups friends by exact location, then buckets locations on a pixel grid.
"""

from friendmap.clustering.grouping import group_entities
from friendmap.clustering.clusterizer import ClusterResult, GridClusterizer, find_clusters

__all__ = ["group_entities", "ClusterResult", "GridClusterizer", "find_clusters"]
