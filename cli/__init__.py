"""
FanZone - Command Line Interface

Main CLI entry point for the service runtime.
"""
from cli.main import app, main

__all__ = ["app", "main"]
