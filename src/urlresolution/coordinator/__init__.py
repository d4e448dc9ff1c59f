"""Job planning, execution and metrics."""
