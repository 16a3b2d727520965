"""
Resource Costing Engine.

Allocates the cost of resources through resource pools to cost objects,
separating the cost of used capacity from the cost of idle capacity.
"""

__version__ = "0.1.0"
