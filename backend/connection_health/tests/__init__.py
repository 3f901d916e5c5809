"""Connection health engine tests."""
