"""Shield detection and precedence resolution package."""
