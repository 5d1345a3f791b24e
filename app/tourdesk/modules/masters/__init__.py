"""
Master data: locations, hotels, lookups, hotel/transport rates,
tour package templates and seasonal periods.
"""
