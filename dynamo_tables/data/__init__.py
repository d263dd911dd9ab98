"""Data access layer for dynamo_tables."""
