"""REST API for the agent."""
