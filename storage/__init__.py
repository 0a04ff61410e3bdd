"""
Storage Package.

Modules:
- cache_policy: TTL cache shared by the aggregator and the report generator
- database: engine / session management
- models/: ORM models of persisted reports and usage
- repositories/: report and usage repositories
"""
