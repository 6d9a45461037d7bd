"""redshift-sink test suite."""
