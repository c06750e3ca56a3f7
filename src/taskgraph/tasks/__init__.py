"""Task records, status lifecycle, YAML persistence and graph validation."""
