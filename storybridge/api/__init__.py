"""
HTTP API for the web reader.
"""
