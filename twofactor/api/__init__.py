"""
REST API for twofactor.
"""
