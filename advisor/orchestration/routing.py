"""
LLM Provider Routing - configurable provider selection
"""
from enum import Enum

from langchain_core.language_models import BaseChatModel
from langchain_community.chat_models import ChatOllama

from advisor.core.config import settings
from advisor.core.logging import logger


class LLMProvider(str, Enum):
    BEDROCK = "bedrock"
    OLLAMA = "ollama"


def get_llm(temperature: float = 0.7, max_tokens: int = 4096) -> BaseChatModel:
    """
    Get a chat model for one generation stage.

    Each stage asks for its own temperature and output budget; the provider
    comes from settings.
    """
    provider = settings.LLM_PROVIDER
    logger.debug(f"Using LLM provider: {provider} (temperature={temperature}, max_tokens={max_tokens})")

    if provider == LLMProvider.BEDROCK.value:
        return _get_bedrock_llm(temperature, max_tokens)
    return _get_ollama_llm(temperature, max_tokens)


def _get_ollama_llm(temperature: float, max_tokens: int) -> BaseChatModel:
    """Get Ollama LLM instance."""
    return ChatOllama(
        model=settings.OLLAMA_MODEL,
        base_url=settings.OLLAMA_BASE_URL,
        temperature=temperature,
        num_predict=max_tokens,
    )


def _get_bedrock_llm(temperature: float, max_tokens: int) -> BaseChatModel:
    """Get AWS Bedrock LLM instance."""
    try:
        from langchain_aws import ChatBedrock
        import boto3

        bedrock_runtime = boto3.client(
            "bedrock-runtime",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        )

        return ChatBedrock(
            client=bedrock_runtime,
            model_id=settings.BEDROCK_MODEL_ID,
            model_kwargs={"temperature": temperature, "max_tokens": max_tokens},
        )
    except Exception as e:
        logger.error(f"Failed to initialize Bedrock: {e}, falling back to Ollama")
        return _get_ollama_llm(temperature, max_tokens)
