"""Application services that orchestrate domain logic."""
