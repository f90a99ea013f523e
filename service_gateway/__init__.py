"""
Secure Webhook Gateway service package.
"""
