"""
Data Ingestion - Normalizers Package.

Pure functions converting upstream payloads to canonical records.

Normalizers:
- market_normalizer: numbers, dates, rate series, chart prices
- news_normalizer: RSS entries, dedup and ordering helpers
- weather_normalizer: forecast, geocoding, precipitation
- table_extractors: HTML indicator tables
"""
