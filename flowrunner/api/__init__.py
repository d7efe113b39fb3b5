"""REST API for workflows and runs."""
