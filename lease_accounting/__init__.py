"""
Lease accounting engine
ROU asset, lease liability, amortization schedules, modifications and disclosures
"""

__version__ = "1.0.0"
