"""portfolio-pricer: price resolution and caching for a personal portfolio tracker."""

__version__ = "0.1.0"
