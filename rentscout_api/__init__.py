"""
REST API over scraped rental listings, with scrape triggers.
"""
