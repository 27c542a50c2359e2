from .settings import EngineSettings, load_settings, configure_logging

__all__ = ["EngineSettings", "load_settings", "configure_logging"]
