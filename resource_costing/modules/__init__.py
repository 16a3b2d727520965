# Resource Costing Engine - Modules
# scenario_loader is imported directly: it depends on the domain layer,
# which itself imports money from here.
from .money import to_decimal, parse_amount, quantize_amount, allocate_largest_remainder

__all__ = [
    "to_decimal",
    "parse_amount",
    "quantize_amount",
    "allocate_largest_remainder",
]
