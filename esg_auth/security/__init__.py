"""Security utilities: session cookies, role gate, rate limiting."""
