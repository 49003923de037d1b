"""
Configuration module for Flowcode.
Handles environment variables, provider/model selection, and agent loop settings.
"""

import os
from dataclasses import dataclass
from typing import List, Dict, Any, Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration"""
    max_tokens: int = int(os.getenv("MAX_TOKENS", "8192"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "0")) if os.getenv("TEMPERATURE") else 0.0
    embedding_model_id: str = os.getenv("EMBEDDING_MODEL_ID", "cohere.embed-english-v3")


@dataclass
class AppConfig:
    """Agent loop and workspace settings"""
    title: str = "Flowcode"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")
    storage_dir_name: str = os.getenv("STORAGE_DIR_NAME", ".flowcode")
    # Loop ceilings
    max_iterations: int = int(os.getenv("MAX_ITERATIONS", "10"))
    max_delegation_depth: int = int(os.getenv("MAX_DELEGATION_DEPTH", "3"))
    planning_iterations: int = int(os.getenv("PLANNING_ITERATIONS", "1"))
    checkpoint_interval: int = int(os.getenv("CHECKPOINT_INTERVAL", "3"))
    # Retrieval
    retrieval_top_k: int = int(os.getenv("RETRIEVAL_TOP_K", "5"))
    chunk_size: int = int(os.getenv("CHUNK_SIZE", "1000"))
    chunk_overlap: int = int(os.getenv("CHUNK_OVERLAP", "100"))
    # Context budget (estimated tokens) and the warning high-water mark
    context_token_budget: int = int(os.getenv("CONTEXT_TOKEN_BUDGET", "100000"))
    token_warning_ratio: float = float(os.getenv("TOKEN_WARNING_RATIO", "0.8"))
    # Flow narrative
    flow_window: int = int(os.getenv("FLOW_WINDOW", "30"))
    observation_truncate_chars: int = int(os.getenv("OBSERVATION_TRUNCATE_CHARS", "500"))
    # Processes
    shell_settle_seconds: float = float(os.getenv("SHELL_SETTLE_SECONDS", "0.5"))
    lsp_command: str = os.getenv("LSP_COMMAND", "pylsp")
    # Sessions
    session_keep: int = int(os.getenv("SESSION_KEEP", "10"))


# ============================================================
# Provider / model pairs tried in order.
# The first pair with a credential is used; when none has one,
# the last pair is used with the ambient AWS credential chain.
# ============================================================
PROVIDER_LIST: List[Dict[str, Any]] = [
    {
        "name": "Anthropic",
        "model": os.getenv("PRIMARY_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0"),
        "description": "Claude Sonnet 4.5 on Bedrock (cross-region profile)",
        "context_window": 200000,
    },
    {
        "name": "Bedrock",
        "model": os.getenv("FALLBACK_MODEL_ID", "us.anthropic.claude-haiku-4-5-20251001-v1:0"),
        "description": "Claude Haiku 4.5 on Bedrock (fallback)",
        "context_window": 200000,
    },
]


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default AWS credential chain"
