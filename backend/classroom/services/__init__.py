"""Service layer: database-backed operations behind the API routers."""
