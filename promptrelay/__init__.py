"""promptrelay — origin-locked, length-capped streaming relay to a generative-text API."""

__version__ = "1.0.0"
