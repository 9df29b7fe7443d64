from __future__ import annotations

from typing import List
from uuid import uuid4

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from brokerlink.contracts.transport import ConnectOptions, QoS


class Settings(BaseSettings):
    """Central configuration (env + .env driven)."""

    model_config = SettingsConfigDict(
        env_prefix="BROKERLINK_",
        env_file=".env",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")

    mqtt_host: str = Field(default="localhost")
    mqtt_port: int = Field(default=1883, ge=1, le=65535)
    mqtt_client_id: str = Field(default="", validate_default=True)
    mqtt_keepalive: int = Field(default=60, ge=0)
    mqtt_clean_session: bool = Field(default=True)

    # Subscribed in this order after every (re)connection
    topics: List[str] = Field(default_factory=list)
    qos: QoS = Field(default=QoS.AT_LEAST_ONCE)

    reconnect_delay: float = Field(default=2.5, ge=0, description="Seconds before each reconnect attempt")
    max_retries: int = Field(default=5, ge=0, description="Failed reconnects tolerated after a connection loss")

    image_format: str = Field(default="JPEG")

    @field_validator("topics")
    @classmethod
    def _no_empty_topics(cls, value: List[str]) -> List[str]:
        if any(not topic for topic in value):
            raise ValueError("topics must not contain empty names")
        return value

    @field_validator("mqtt_client_id")
    @classmethod
    def _default_client_id(cls, value: str) -> str:
        return value or f"brokerlink-{uuid4().hex[:8]}"

    def connect_options(self) -> ConnectOptions:
        return ConnectOptions(
            host=self.mqtt_host,
            port=self.mqtt_port,
            client_id=self.mqtt_client_id,
            keepalive=self.mqtt_keepalive,
            clean_session=self.mqtt_clean_session,
        )
