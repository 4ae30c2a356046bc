"""Admin web app for the catalog import."""
