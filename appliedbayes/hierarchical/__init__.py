"""Hierarchical normal model fitted with PyMC"""

from .hierarchical_model import HierarchicalNormalModel

__all__ = ['HierarchicalNormalModel']
