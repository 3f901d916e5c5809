"""HTTP adapter for the connection health engine."""
