"""Route handlers for ranking, feedback and trending."""
