"""Configuration, logging and database setup."""
