"""
LogDigest - HTTP API
"""
