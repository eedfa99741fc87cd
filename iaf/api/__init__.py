"""Platform API: FastAPI service for applications, managed services and bindings."""
