"""External collaborators: capability interfaces and their adapters."""
