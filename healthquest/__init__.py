"""healthquest: points-and-state core for a gamified health-engagement app"""

__version__ = "1.0.0"
