"""
Urbanrural: connected-cluster urban/rural classification of population grids.

Cells above a population density cutoff are grouped into 4- or 8-connected
clusters; clusters whose total population reaches a minimum are urban, all
other cells are rural.
"""

__version__ = "0.1.0"
