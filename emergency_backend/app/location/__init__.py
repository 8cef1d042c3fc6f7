"""
location — Coordinates, geocoding and nearby-service lookup.

    geo             — haversine, validation, bounding boxes, display helpers
    enricher        — LocationEnricher + geocoding providers
    reference_data  — offline cities, service directory, jurisdiction boxes
"""
