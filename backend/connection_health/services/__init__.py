"""Connection health services."""
