"""
FanZone - Dependency Injection Module

Name-keyed container that wires the application's services together and
runs the staged bootstrap.

Usage:
    from di import DIContainer

    container = DIContainer()
    await container.initialize_app()
    gifts = container.get("gifts")
"""

from di.container import DIContainer, ServiceRegistration

__all__ = ["DIContainer", "ServiceRegistration"]
