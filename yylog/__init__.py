"""Structured logging: JSON and console encoders, an asynchronous rotating file writer, and session fields."""

__version__ = "0.1.0"