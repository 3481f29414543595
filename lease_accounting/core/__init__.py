"""
Core lease accounting components
"""
