"""
queue_worker - a RabbitMQ producer/consumer worker with a SQLite user store.
"""

__version__ = "1.0.0"
