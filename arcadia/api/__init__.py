"""
Arcadia HTTP API
"""
