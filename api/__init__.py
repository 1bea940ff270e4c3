"""MTR service API."""
