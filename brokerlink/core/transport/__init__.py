from brokerlink.core.transport.mqtt import AiomqttTransport

__all__ = ["AiomqttTransport"]
