from .settings import DEFAULT_ENV_FILE, Settings, load_settings

__all__ = ["DEFAULT_ENV_FILE", "Settings", "load_settings"]
