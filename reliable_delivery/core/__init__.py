"""Core building blocks: exceptions, settings, and database foundations."""
