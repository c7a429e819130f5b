"""wabridge: line-delimited JSON bridge to a WhatsApp-style messaging session."""

__version__ = "0.3.0"
