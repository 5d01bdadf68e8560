"""Services: PostgreSQL access and the FHIR protocol core."""
