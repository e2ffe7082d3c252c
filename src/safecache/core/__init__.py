"""Core application plumbing: configuration, errors, middleware, lifespan."""
