"""Domain services: platform backends, collections, tables and file tree."""
