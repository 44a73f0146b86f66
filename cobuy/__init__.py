"""CoBuy live ownership-percentage negotiation service."""
