from community_dispatch.api.main import app

__all__ = ["app"]
