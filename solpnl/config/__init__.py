"""
Configuration Module

Constants and runtime settings for the tracker.
"""

from .settings import (
    TrackerConfig,
    SOL_MINT,
    USDC_MINT,
    USDT_MINT,
    PYUSD_MINT,
    STABLECOIN_MINTS,
    KNOWN_TOKENS,
)

__all__ = [
    'TrackerConfig',
    'SOL_MINT',
    'USDC_MINT',
    'USDT_MINT',
    'PYUSD_MINT',
    'STABLECOIN_MINTS',
    'KNOWN_TOKENS',
]
