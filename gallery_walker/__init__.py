"""Walk paginated gallery pages and download each image once."""

from .models import Termination, TraversalResult
from .traverser import PageSeriesTraverser, traverse

__all__ = ["PageSeriesTraverser", "Termination", "TraversalResult", "traverse"]
