from .app import CMSApp, create_app

__all__ = ["CMSApp", "create_app"]
