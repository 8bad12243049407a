"""Square-facing services: gateway, availability, catalog, bookings and no-show fees"""
