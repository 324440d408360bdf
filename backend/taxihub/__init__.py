"""TaxiHub: taxi-rank coordination back office and public rank directory."""
