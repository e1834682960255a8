"""HTTP API for tasksync."""
