"""HTTP service for the Prism key engine."""
