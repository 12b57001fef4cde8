"""
Solution Approval Tracker
Blueprint registry.
"""
