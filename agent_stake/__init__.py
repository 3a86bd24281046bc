"""Agent Stake: stake lifecycle and rewards/slashing accounting."""

__version__ = "0.1.0"
