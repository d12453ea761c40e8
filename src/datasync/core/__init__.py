"""
Command line host and environment configuration for datasync.
"""
