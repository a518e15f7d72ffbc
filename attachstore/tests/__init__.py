"""attachstore test suite."""
