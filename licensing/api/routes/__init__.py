from licensing.api.routes import bot, license, settings

__all__ = ["bot", "license", "settings"]
