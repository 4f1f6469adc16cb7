"""
Rover photo ingestion: source adapters, deduplication, per-sol scraping and
completeness tracking.
"""
