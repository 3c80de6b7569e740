"""Engine adapter tests."""
