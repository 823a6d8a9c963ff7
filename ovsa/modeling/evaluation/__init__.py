from .proportions import (
    ProportionComparator,
    plot_proportions,
)

__all__ = [
    "ProportionComparator",
    "plot_proportions",
]
