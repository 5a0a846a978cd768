"""Job intake, dispatch, status publishing and cleanup."""
