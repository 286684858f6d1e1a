"""TenantQ CLI - inspect batch jobs and the dispatcher"""

__version__ = "1.0.0"
