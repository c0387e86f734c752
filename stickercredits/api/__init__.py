"""HTTP API for the credits core."""
