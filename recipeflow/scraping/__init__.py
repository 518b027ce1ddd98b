"""Product review sources: scraping providers and CSV import."""
