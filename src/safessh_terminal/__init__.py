"""SSH command gateway with a safety gate and resumable session state."""

__version__ = "0.1.0"
