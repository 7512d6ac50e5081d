"""SignalCraft API client and error classes."""
