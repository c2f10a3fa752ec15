"""
Configuration utilities for settings loading, environment validation and
seed source loading.
"""

from .env_validator import EnvironmentValidator
from .settings import PipelineSettings
from .source_loader import load_sources_from_yaml

__all__ = ['EnvironmentValidator', 'PipelineSettings', 'load_sources_from_yaml']
