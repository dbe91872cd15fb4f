"""
Services Module

External collaborators (Jupiter, Solana RPC) and the trade ledger.
"""
