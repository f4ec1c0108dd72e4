"""Foundation layer: errors, configuration and the tool registry."""
