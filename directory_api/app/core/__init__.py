"""
Cross-cutting infrastructure: settings, logging, the SQLite layer,
authentication, the origin guard, rate limiting, caching and the
error taxonomy.
"""
