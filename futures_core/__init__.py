"""
Position and risk management core for leveraged futures trading
"""

__version__ = "0.1.0"
