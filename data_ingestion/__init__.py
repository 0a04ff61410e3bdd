"""
Data Ingestion Package.

Canonical records, reference catalog, normalizers and the
market aggregator that merges upstream results.

Modules:
- types: canonical records and the Aggregate envelope
- catalog: commodities, tickers, indicator pages, feeds, places
- normalizers: raw payload -> canonical records
- aggregator: fan-out / merge / cache per query
"""
