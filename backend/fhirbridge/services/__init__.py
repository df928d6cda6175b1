"""Service layer: resource access, sync, export and the security gateway."""
