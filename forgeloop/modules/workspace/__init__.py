"""
Workspace Module - backing stores, staging overlay, change application and locks
"""
