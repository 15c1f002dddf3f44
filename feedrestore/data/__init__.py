"""
Configuration loading for the restore client.

This package is responsible for:
* Determining the shared cache directory (via settings, env var and a default).
* Loading restore settings and the configured package sources from YAML.
"""
