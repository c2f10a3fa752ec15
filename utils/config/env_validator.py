"""
Environment validator for the crawl pipeline.

Validates required environment variables for each run mode.
"""
import os
from typing import Dict, List, Mapping, Optional

from loguru import logger


class EnvironmentValidator:
    """Validates required environment variables for pipeline components."""

    REQUIRED_VARS: Dict[str, List[str]] = {
        "producer": [],
        "consumer": ["INGEST_SECRET"],
        "api": ["CRON_SECRET|INGEST_SECRET"],
    }

    LLM_VARS = ["OPENAI_API_KEY"]
    AZURE_LLM_VARS = ["OPENAI_API_KEY", "OPENAI_BASE_URL", "AZURE_OPENAI_DEPLOYMENT"]

    @staticmethod
    def _is_set(var: str, env: Mapping[str, str]) -> bool:
        # "A|B" means either variable satisfies the requirement
        return any(env.get(name) for name in var.split("|"))

    @staticmethod
    def missing_vars(mode: str, env: Optional[Mapping[str, str]] = None) -> List[str]:
        """List required variables that are unset for ``mode``."""
        env = os.environ if env is None else env
        required = EnvironmentValidator.REQUIRED_VARS.get(mode, [])
        return [var for var in required if not EnvironmentValidator._is_set(var, env)]

    @staticmethod
    def validate_mode(mode: str, env: Optional[Mapping[str, str]] = None) -> bool:
        """Validate environment for a run mode, logging anything missing.

        Returns:
            True if every required variable is present
        """
        missing = EnvironmentValidator.missing_vars(mode, env)
        if missing:
            logger.error(f"Missing required {mode} configuration: {', '.join(missing)}")
            return False
        return True

    @staticmethod
    def validate_llm_config(env: Optional[Mapping[str, str]] = None) -> Dict[str, bool]:
        """Validate LLM configuration environment variables.

        Returns:
            Dictionary with validation results for each analyzer backend
        """
        env = os.environ if env is None else env
        results = {
            "openai": all(env.get(var) for var in EnvironmentValidator.LLM_VARS),
            "azure_openai": False,
        }

        if env.get("AZURE_OPENAI_API_VERSION"):
            azure_valid = all(env.get(var) for var in EnvironmentValidator.AZURE_LLM_VARS)
            results["azure_openai"] = azure_valid
            if not azure_valid:
                missing = [var for var in EnvironmentValidator.AZURE_LLM_VARS if not env.get(var)]
                logger.error(f"Missing required Azure OpenAI configuration: {', '.join(missing)}")

        if not results["openai"]:
            logger.warning("⚠️ OPENAI_API_KEY not set, analyzer will use keyword heuristics")

        return results
