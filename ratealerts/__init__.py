"""ratealerts - threshold alerts for currency and crypto rates."""

__version__ = "0.1.0"
