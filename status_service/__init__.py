"""Status Service: a single status endpoint with coordinated graceful shutdown."""
