"""Calendar event approval workflow API."""
