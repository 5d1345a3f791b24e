"""
Tour Package Query module.

A query is a customer-specific draft of a tour: itineraries with hotels,
room allocations and transport, flights, policies and pricing.
"""
