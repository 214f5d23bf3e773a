"""ingestion — External weather snapshot providers."""
