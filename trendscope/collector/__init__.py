"""Multi-platform trend collection: adapters, normalization, deduplication, aggregation."""
