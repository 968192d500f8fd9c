"""Form distribution and response reconciliation service."""
