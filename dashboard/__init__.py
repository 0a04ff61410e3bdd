"""
Dashboard Package.

HTTP API over the aggregator and the report generator.

Modules:
- main: FastAPI application factory and error envelopes
- services: process-wide service container
- routers/: news, markets, weather, reports, health
"""
