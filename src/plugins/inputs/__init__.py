"""Input plugins: sources of resource events and the runtime's outer surfaces."""
