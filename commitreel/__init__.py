"""commitreel — repository history to Gource change log."""

__version__ = "0.1.0"
