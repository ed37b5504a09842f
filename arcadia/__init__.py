"""
Arcadia
Tiered on-chain payment escrow and reconciliation for AI video-prompt briefs
"""

__version__ = "0.1.0"
