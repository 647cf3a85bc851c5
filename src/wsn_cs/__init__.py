"""
wsn_cs: sink-side joint compressed-sensing reconstruction for clustered
wireless sensor networks.
"""

__version__ = "1.0.0"
