"""Domain layer: models, SQL helpers and planning/validation services."""
