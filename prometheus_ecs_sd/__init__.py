"""Prometheus file_sd discovery for Alibaba Cloud ECS instances."""

__version__ = "0.1.0"
