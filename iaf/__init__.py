"""IAF operator: Application and ManagedService controllers for Kubernetes."""

__version__ = "0.1.0"
