"""Core infrastructure: state, lifespan, middleware, exception handlers."""
