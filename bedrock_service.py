"""
Amazon Bedrock service module.
Implements the generation capability (messages + tools -> text + tool calls)
and the embedding function used by the vector index.
"""

import boto3
import json
import logging
from typing import List, Dict, Optional, Any
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from dataclasses import dataclass, field
from config import aws_config, model_config

logger = logging.getLogger(__name__)

# Error codes that mean the credential itself is missing, expired, or rejected
_CREDENTIAL_ERROR_CODES = {
    "ExpiredTokenException",
    "InvalidSignatureException",
    "UnrecognizedClientException",
    "InvalidClientTokenId",
    "AccessDeniedException",
}

# Error codes worth retrying later
_RETRYABLE_ERROR_CODES = {
    "ThrottlingException",
    "ServiceUnavailableException",
    "ModelNotReadyException",
    "InternalServerException",
    "ModelTimeoutException",
}


class BedrockError(Exception):
    """Custom exception for Bedrock service errors"""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class CredentialError(BedrockError):
    """Missing or invalid credential. Not retryable; the user has to act."""

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


@dataclass
class ToolUseBlock:
    """Represents a tool_use block from the response"""
    id: str = ""
    name: str = ""
    input: Dict = field(default_factory=dict)


@dataclass
class GenerationResult:
    """Result from a generation request"""
    content: str = ""
    tool_uses: List[ToolUseBlock] = field(default_factory=list)
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0


def parse_credential(secret: str) -> Dict[str, str]:
    """Split an ``access_key_id:secret_access_key[:session_token]`` secret into boto3 kwargs."""
    parts = secret.split(":", 2)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise CredentialError("Malformed credential: expected access_key_id:secret_access_key[:session_token]")
    kwargs = {"aws_access_key_id": parts[0], "aws_secret_access_key": parts[1]}
    if len(parts) == 3 and parts[2]:
        kwargs["aws_session_token"] = parts[2]
    return kwargs


class BedrockService:
    """
    Service class for Amazon Bedrock interactions.
    One client per distinct credential; the ambient AWS chain is used when
    the selected provider has no credential of its own.
    """

    def __init__(self, region: Optional[str] = None, client: Optional[Any] = None):
        self.region = region or aws_config.region
        self._clients: Dict[str, Any] = {}
        if client is not None:
            self._clients[""] = client
        logger.info(f"BedrockService initialized for region: {self.region}")

    def _create_client(self, credential: Optional[str] = None) -> Any:
        """Create and configure a Bedrock runtime client"""
        try:
            session_kwargs: Dict[str, Any] = {"region_name": self.region}
            if credential:
                session_kwargs.update(parse_credential(credential))
            elif aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            return session.client("bedrock-runtime")

        except (NoCredentialsError, PartialCredentialsError):
            raise CredentialError("AWS credentials not configured.")
        except BedrockError:
            raise
        except Exception as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def _client_for(self, credential: Optional[str]) -> Any:
        key = credential or ""
        client = self._clients.get(key)
        if client is None:
            client = self._create_client(credential)
            self._clients[key] = client
        return client

    # ------------------------------------------------------------------
    # Request formatting
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Fold system-role messages into user turns and merge same-role neighbours.
        The Messages API only accepts alternating user/assistant turns."""
        formatted: List[Dict[str, Any]] = []
        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content") or ""
            if not isinstance(content, str):
                content = json.dumps(content)
            if role == "system":
                role = "user"
                content = f"[system]\n{content}"
            if not content.strip():
                content = "(no content)"
            if formatted and formatted[-1]["role"] == role:
                formatted[-1]["content"] += "\n\n" + content
            else:
                formatted.append({"role": role, "content": content})
        if formatted and formatted[0]["role"] != "user":
            formatted.insert(0, {"role": "user", "content": "(conversation resumed)"})
        return formatted

    @staticmethod
    def _format_tools(tools: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        return [
            {
                "name": t["name"],
                "description": t.get("description", ""),
                "input_schema": t.get("parameters") or {"type": "object", "properties": {}},
            }
            for t in (tools or [])
        ]

    def _format_request_body(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": model_config.max_tokens,
            "system": system,
            "messages": self._normalize_messages(messages),
        }
        if model_config.temperature is not None:
            body["temperature"] = model_config.temperature
        formatted_tools = self._format_tools(tools)
        if formatted_tools:
            body["tools"] = formatted_tools
            body["tool_choice"] = {"type": "auto"}
        return body

    def _parse_response(self, response_body: Dict) -> GenerationResult:
        """Parse the Anthropic response body, extracting content and tool_use blocks"""
        result = GenerationResult()
        try:
            for block in response_body.get("content", []):
                block_type = block.get("type", "")
                if block_type == "text":
                    result.content += block.get("text", "")
                elif block_type == "tool_use":
                    result.tool_uses.append(ToolUseBlock(
                        id=block.get("id", ""),
                        name=block.get("name", ""),
                        input=block.get("input", {}) or {},
                    ))
            usage = response_body.get("usage", {})
            result.input_tokens = usage.get("input_tokens", 0)
            result.output_tokens = usage.get("output_tokens", 0)
            result.stop_reason = response_body.get("stop_reason")
        except (KeyError, IndexError, AttributeError) as e:
            logger.error(f"Error parsing response: {e}")
            raise BedrockError(f"Failed to parse model response: {e}", retryable=False)
        return result

    @staticmethod
    def _classify_client_error(e: ClientError) -> BedrockError:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        error_message = e.response.get("Error", {}).get("Message", str(e))
        logger.error(f"Bedrock API error: {error_code} - {error_message}")
        if error_code in _CREDENTIAL_ERROR_CODES:
            return CredentialError(f"AWS credentials rejected ({error_code}): {error_message}")
        return BedrockError(
            f"Bedrock API error: {error_message}",
            retryable=error_code in _RETRYABLE_ERROR_CODES,
        )

    # ------------------------------------------------------------------
    # Generation capability
    # ------------------------------------------------------------------

    def generate(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        model: str,
        provider: str,
        credentials: Dict[str, str],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> GenerationResult:
        """
        Generate a response for the given conversation.
        Returns a GenerationResult with text and any requested tool calls.
        """
        client = self._client_for(credentials.get(provider))
        request_body = self._format_request_body(system, messages, tools)
        try:
            logger.info(f"Invoking model: {model} (provider {provider})")
            response = client.invoke_model(
                modelId=model,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
            return self._parse_response(response_body)
        except (NoCredentialsError, PartialCredentialsError):
            raise CredentialError("AWS credentials not configured.")
        except ClientError as e:
            raise self._classify_client_error(e)

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def embed_texts(
        self,
        texts: List[str],
        input_type: str = "search_document",
        model_id: Optional[str] = None,
    ) -> List[List[float]]:
        """Embed texts using Bedrock Cohere Embed. Batches to stay under 2048 chars per call.
        input_type: 'search_document' for corpus, 'search_query' for queries."""
        embed_model = model_id or model_config.embedding_model_id
        client = self._client_for(None)
        batch_size = 8
        char_limit = 1800
        all_embeddings: List[List[float]] = []
        i = 0
        while i < len(texts):
            batch = []
            batch_chars = 0
            while i < len(texts) and len(batch) < batch_size and batch_chars + len(texts[i]) <= char_limit:
                t = texts[i][:1500]
                batch.append(t)
                batch_chars += len(t)
                i += 1
            if not batch:
                batch.append(texts[i][:1500])
                i += 1
            body = json.dumps({"texts": batch, "input_type": input_type})
            try:
                response = client.invoke_model(
                    modelId=embed_model,
                    body=body,
                    contentType="application/json",
                    accept="application/json",
                )
                response_body = json.loads(response["body"].read())
                embeddings = response_body.get("embeddings")
                if isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], list):
                    all_embeddings.extend(embeddings)
                elif isinstance(embeddings, dict) and "float" in embeddings:
                    all_embeddings.extend(embeddings["float"])
                else:
                    all_embeddings.extend([[] for _ in batch])
            except ClientError as e:
                logger.warning(f"Embed API error: {e}")
                all_embeddings.extend([[] for _ in batch])
        return all_embeddings
