"""
Royalty service for the LicenseIQ Royalty Engine.
"""
