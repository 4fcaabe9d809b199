"""Read-only selectors for the billing kernel."""
