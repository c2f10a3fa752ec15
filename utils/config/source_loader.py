"""
Seed source loading from YAML.
"""
import os
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from crawler.models import Source


def _convert_yaml_to_source(source_data: Dict[str, Any]) -> Optional[Source]:
    """Convert one YAML entry to a Source. Returns None when required fields are missing."""
    name = source_data.get('name')
    url = source_data.get('url')
    if not name or not url:
        logger.warning(f"Missing required fields for source: {source_data}")
        return None

    return Source(
        id=str(source_data.get('id') or name),
        url=url,
        name=name,
        type=str(source_data.get('type') or 'article').lower(),
        category=source_data.get('category') or '',
        language=source_data.get('language') or 'en',
        is_active=source_data.get('enabled', True) is not False,
    )


def load_sources_from_yaml(config_path: str) -> List[Source]:
    """
    Load seed sources from a YAML file with a top-level ``sources`` list.

    Returns:
        Parsed sources; an empty list when the file is missing or has none

    Raises:
        yaml.YAMLError: When the file is not valid YAML
    """
    if not os.path.exists(config_path):
        logger.warning(f"Sources file not found: {config_path}")
        return []

    with open(config_path, 'r', encoding='utf-8') as file:
        data = yaml.safe_load(file)

    if not data or 'sources' not in data:
        logger.warning(f"No sources found in {config_path}")
        return []

    sources = []
    for source_data in data['sources'] or []:
        if not isinstance(source_data, dict):
            continue
        try:
            source = _convert_yaml_to_source(source_data)
        except ValueError as e:
            logger.warning(f"Failed to process source config {source_data}: {e}")
            continue
        if source:
            sources.append(source)

    logger.info(f"Loaded {len(sources)} source configurations from {config_path}")
    return sources
