"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from exchange_crm.core.exceptions import (
    ApplicationException,
    DomainException,
    InvalidStateException,
    RepositoryException,
    StoreUnavailableException,
    ConcurrentUpdateException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    TickAlreadyRunningException,
    ExternalServiceException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "InvalidStateException",
    "RepositoryException",
    "StoreUnavailableException",
    "ConcurrentUpdateException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "TickAlreadyRunningException",
    "ExternalServiceException",
]
