"""External service connectors for bitbucket-tools."""
