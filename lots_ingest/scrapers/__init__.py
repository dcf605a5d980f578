"""Page fetchers and HTML parsers for the registry sites."""
