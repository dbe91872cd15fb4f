"""
solpnl - profit and loss tracking for Solana wallets traded through Jupiter.
"""

__version__ = "0.1.0"
