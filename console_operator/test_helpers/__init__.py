"""
Shared helpers for testing the console operator
"""
