"""
brokerlink - self-healing MQTT client session.

Connects to a broker, keeps a fixed set of topic subscriptions alive across
connection losses, and publishes text and image payloads with optional
delivery tracking.
"""

__version__ = "0.1.0"
