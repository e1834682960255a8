"""Core configuration for tasksync."""
