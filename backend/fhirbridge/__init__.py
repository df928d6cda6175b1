"""FHIR resource normalization, synchronization and export core."""
