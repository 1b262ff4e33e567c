"""
Worksite renovation tracker
Blueprint registry.
"""
