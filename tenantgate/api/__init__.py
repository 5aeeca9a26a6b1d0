"""HTTP surface for tenantgate."""
