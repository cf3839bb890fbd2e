"""Labeled process trees and project grouping for developer machines."""

__version__ = "0.3.0"
