"""
rabbit_keeper

This package provides a resilient, asynchronous RabbitMQ client:
long-lived publisher/consumer sessions that survive the broker
connection being torn down and rebuilt.
"""
__version__ = "0.1.0"
