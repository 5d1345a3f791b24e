"""
Pricing module.

- Hotel + transport calculator for draft itineraries (/api/pricing/calculate)
- Tour package pricing matcher that fills a query's pricing section
"""
