"""Status probing — read-only views of controller-managed resources."""
