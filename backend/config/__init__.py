"""Configuration module for the CRUD backend."""
from .settings import AppConfig, OAuth2Provider, load_settings

__all__ = ["AppConfig", "OAuth2Provider", "load_settings"]
