"""Web control panel: FastAPI app, routers and middleware."""
