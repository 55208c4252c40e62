"""Domain layer: capture protocol, options and errors."""
