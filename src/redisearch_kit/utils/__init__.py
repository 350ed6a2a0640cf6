"""Small helpers shared by the schema, query and index packages."""
