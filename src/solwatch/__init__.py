"""solwatch -- price aggregation and realtime sync core for SOL and SPL tokens."""

__version__ = "0.1.0"
