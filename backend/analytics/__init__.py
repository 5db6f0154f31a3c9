"""Anonymous interaction tracking and dashboard aggregation for the nightlife app."""
