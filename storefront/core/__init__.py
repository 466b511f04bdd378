"""Core building blocks: settings, logging, errors and the database layer."""
