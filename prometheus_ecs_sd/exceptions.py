"""Custom exception hierarchy for the ECS discovery daemon."""


class DiscoveryError(Exception):
    """Base exception for all daemon errors."""


class ConfigError(DiscoveryError):
    """Invalid or missing configuration."""


class InventoryAPIError(DiscoveryError):
    """Error listing instances from the ECS API."""

    def __init__(self, message: str, code: str | None = None, request_id: str | None = None):
        super().__init__(message)
        self.code = code
        self.request_id = request_id
