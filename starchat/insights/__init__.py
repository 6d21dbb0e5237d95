"""Incremental topic clustering of fan messages into insight cards."""
