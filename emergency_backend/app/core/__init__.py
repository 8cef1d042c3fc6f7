"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging
    middleware      — request logging & correlation IDs
    errors          — exception hierarchy & handlers
    health          — health check aggregation
    database        — async SQLAlchemy engine, sessions, ORM base
    cache           — Redis cache for geocode results
"""
