"""
Payment schedule generation
"""
