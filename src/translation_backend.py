"""
AI translation collaborator.

``TranslationBackend`` is the contract the Translator relies on: a batch of
source strings goes in, translations and per-string failures come out.
``OpenAITranslationBackend`` implements it on top of the chat completions API.
"""
import asyncio
import json
import random
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import jsonschema
import tiktoken
from aiolimiter import AsyncLimiter
from openai import (
    APIConnectionError,
    APIStatusError,
    RateLimitError,
    APITimeoutError,
    OpenAIError
)
from openai import AsyncOpenAI
from openai.types.chat import (
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam
)

from src.app_config import AppConfig
from src.errors import TranslationRequestFailure
from src.logging_config import get_logger

# The batch answer must be a flat JSON object of strings.
BATCH_RESPONSE_SCHEMA = {
    "type": "object",
    "patternProperties": {
        "^.*$": {"type": "string"}
    },
    "additionalProperties": False
}

# Tokens kept free for instructions and the model's answer.
RESERVED_PROMPT_TOKENS = 1000

logger = get_logger()


@dataclass
class BatchTranslation:
    translations: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)


class TranslationBackend:
    """Contract for the AI translation collaborator."""

    async def translate_batch(self, texts: List[str], context: str) -> BatchTranslation:
        raise NotImplementedError


def load_glossary(glossary_file_path: Optional[str]) -> Dict[str, str]:
    """
    Load a ``{term: translation}`` glossary from a JSON file.

    A missing or invalid file yields an empty glossary.
    """
    if not glossary_file_path:
        return {}
    try:
        with open(glossary_file_path, 'r', encoding='utf-8') as f:
            glossary = json.load(f)
    except FileNotFoundError:
        logger.error("Glossary file '%s' not found.", glossary_file_path)
        return {}
    except json.JSONDecodeError as json_exc:
        logger.error("Error decoding JSON glossary file: %s", json_exc)
        return {}
    if not isinstance(glossary, dict):
        logger.error("Glossary file '%s' must contain a JSON object.", glossary_file_path)
        return {}
    return {str(k): str(v) for k, v in glossary.items()}


def count_tokens(text: str, model_name: str = 'gpt-4o-mini') -> int:
    """Count the number of tokens in ``text`` for ``model_name``.

    ``tiktoken.encoding_for_model`` may need to download model data. When
    that fails the ``gpt2`` encoding shipped with tiktoken is used, and as a
    last resort a whitespace split.
    """
    try:
        encoding = tiktoken.encoding_for_model(model_name)
    except Exception:
        try:
            encoding = tiktoken.get_encoding("gpt2")
        except Exception:
            return len(text.split())

    try:
        return len(encoding.encode(text))
    except Exception:
        return len(text.split())


def chunk_texts(texts: List[str], batch_size: int, token_budget: int, model_name: str) -> List[List[str]]:
    """Split ``texts`` into batches bounded by count and by token budget."""
    chunks: List[List[str]] = []
    current: List[str] = []
    current_tokens = 0
    for text in texts:
        tokens = count_tokens(text, model_name)
        if current and (len(current) >= batch_size or current_tokens + tokens > token_budget):
            chunks.append(current)
            current, current_tokens = [], 0
        current.append(text)
        current_tokens += tokens
    if current:
        chunks.append(current)
    return chunks


def extract_placeholders(text: str) -> Tuple[str, Dict[str, str]]:
    """
    Replace ``{...}`` expressions and ``<...>`` tags with unique tokens.

    Returns:
        The masked text and the token -> original mapping.
    """
    if not isinstance(text, str):
        raise ValueError("Input text must be a string.")

    pattern = re.compile(r'(<[^<>]+>)|({[^{}]+})')
    placeholder_mapping = {}

    def replace_placeholder(match):
        placeholder_token = f"__PH_{uuid.uuid4().hex}__"
        placeholder_mapping[placeholder_token] = match.group(0)
        return placeholder_token

    return pattern.sub(replace_placeholder, text), placeholder_mapping


def restore_placeholders(text: str, placeholder_mapping: Dict[str, str]) -> str:
    for token, placeholder in placeholder_mapping.items():
        text = text.replace(token, placeholder)
    return text


def clean_translated_text(translated_text: str, original_text: str) -> str:
    """
    Remove wrapping quotes or square brackets the model added but the
    original text does not have.
    """
    translated_text = translated_text.strip()
    for opening, closing in (('"', '"'), ('[', ']'), ('`', '`')):
        if (len(translated_text) >= 2 and translated_text.startswith(opening) and translated_text.endswith(closing)
                and not (original_text.startswith(opening) and original_text.endswith(closing))):
            translated_text = translated_text[1:-1]
    return translated_text


async def _handle_retry(attempt: int, max_retries: int, base_delay: float, label: str,
                        api_exc: Optional[Exception] = None) -> bool:
    """
    Sleep before the next attempt (exponential backoff with jitter, or the
    server's Retry-After) and report whether another attempt is allowed.
    """
    if attempt >= max_retries:
        logger.error("Request for %s failed after %d attempts.", label, max_retries)
        return False

    retry_after = None
    headers = getattr(getattr(api_exc, "response", None), "headers", None) or {}
    retry_after_header = headers.get("Retry-After") if hasattr(headers, "get") else None
    if retry_after_header:
        try:
            if retry_after_header.endswith("ms"):
                retry_after = float(retry_after_header[:-2]) / 1000
            else:
                retry_after = float(retry_after_header)
        except ValueError:
            logger.warning("Failed to parse Retry-After header %r. Falling back to exponential backoff.",
                           retry_after_header)
    delay = retry_after if retry_after is not None else base_delay * (2 ** (attempt - 1)) + random.uniform(0, 1)
    logger.info("Retrying %s in %.2f seconds (Attempt %d/%d)", label, delay, attempt, max_retries)
    await asyncio.sleep(delay)
    return True


class OpenAITranslationBackend(TranslationBackend):
    """Translates UI strings with an OpenAI chat model."""

    max_retries = 3
    base_delay = 1.0

    def __init__(self, config: AppConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        self.client = client if client is not None else config.openai_client
        self.semaphore = asyncio.Semaphore(max(1, config.max_concurrent_api_calls))
        self.rate_limiter = AsyncLimiter(max_rate=config.requests_per_minute, time_period=60)
        self.glossary = load_glossary(config.glossary_file_path)

    def _system_prompt(self) -> str:
        glossary_text = '\n'.join(f'- "{k}" should be translated as "{v}"' for k, v in self.glossary.items())
        return f"""
You are an expert translator specializing in software localization. You translate the user interface
of OpenCode, an AI coding agent that runs in the terminal, from English to {self.config.target_language}.

**Instructions**:
- **Do not translate or modify placeholder tokens**: text enclosed in double underscores (e.g. `__PH_abc123__`) must stay exactly as is.
- **Preserve code**: keep `{{...}}` expressions, markup tags, keyboard shortcuts, command names, file paths and product names (OpenCode, GitHub, MCP, LSP) unchanged.
- **Preserve formatting**: keep leading/trailing punctuation, `\\n` and `\\t` sequences.
- **Do not add** quotation marks, brackets or explanations.
- Keep translations short: they are shown in a terminal UI with limited width.

**Translation Glossary** (non-negotiable):
{glossary_text or "- (none)"}
"""

    async def translate_text(self, text: str, context: str) -> str:
        """
        Translate one string.

        Raises:
            TranslationRequestFailure: if the request fails after all retries.
        """
        if self.client is None:
            raise TranslationRequestFailure(text, "AI translation is not configured (OPENAI_API_KEY missing)")

        processed_text, placeholder_mapping = extract_placeholders(text)
        prompt = (
            f"**Context:**\n{context}\n\n"
            f"**Text to Translate:**\n{processed_text}\n\n"
            "Provide the translation of the text only."
        )

        for attempt in range(1, self.max_retries + 1):
            try:
                async with self.semaphore, self.rate_limiter:
                    response = await self.client.chat.completions.create(
                        model=self.config.model_name,
                        messages=[
                            ChatCompletionSystemMessageParam(role="system", content=self._system_prompt()),
                            ChatCompletionUserMessageParam(role="user", content=prompt)
                        ],
                        temperature=0.3,
                        timeout=60.0,
                    )
                content = response.choices[0].message.content
                if not content or not content.strip():
                    raise TranslationRequestFailure(text, "empty response")
                translated_text = restore_placeholders(content.strip(), placeholder_mapping)
                return clean_translated_text(translated_text, text)
            except (RateLimitError, APITimeoutError, APIConnectionError, APIStatusError, OpenAIError) as api_exc:
                logger.error("API error occurred: %s - %s", api_exc.__class__.__name__, api_exc)
                if not await _handle_retry(attempt, self.max_retries, self.base_delay, repr(text), api_exc):
                    raise TranslationRequestFailure(text, str(api_exc)) from api_exc

        raise TranslationRequestFailure(text, "retries exhausted")

    async def _request_batch(self, texts: List[str], context: str) -> Dict[str, str]:
        """
        Ask for a JSON object translating all ``texts`` at once.

        Returns:
            original -> translation for every entry the model answered; empty on failure.
        """
        numbered = {str(i): text for i, text in enumerate(texts, 1)}
        prompt = (
            f"**Context:**\n{context}\n\n"
            "Translate every value of the following JSON object. Return a JSON object with the same keys "
            "and the translations as values, and nothing else.\n\n"
            f"```json\n{json.dumps(numbered, ensure_ascii=False, indent=2)}\n```"
        )

        for attempt in range(1, self.max_retries + 1):
            response_text = ""
            try:
                async with self.semaphore, self.rate_limiter:
                    response = await self.client.chat.completions.create(
                        model=self.config.model_name,
                        messages=[
                            ChatCompletionSystemMessageParam(role="system", content=self._system_prompt()),
                            ChatCompletionUserMessageParam(role="user", content=prompt)
                        ],
                        temperature=0.2,
                        response_format={"type": "json_object"},
                        timeout=120.0,
                    )
                response_text = (response.choices[0].message.content or "").strip()
                parsed_json = json.loads(response_text)
                jsonschema.validate(instance=parsed_json, schema=BATCH_RESPONSE_SCHEMA)
                return {numbered[k]: v for k, v in parsed_json.items() if k in numbered and v.strip()}
            except json.JSONDecodeError as json_exc:
                logger.error("Batch translation failed: AI did not return valid JSON. Error: %s", json_exc)
                logger.debug("Invalid AI response (JSON Decode Error):\n---\n%s\n---", response_text)
            except jsonschema.ValidationError as schema_exc:
                logger.error("Batch translation failed: response did not match the schema. Error: %s",
                             schema_exc.message)
            except (RateLimitError, APITimeoutError, APIConnectionError, APIStatusError, OpenAIError) as api_exc:
                logger.warning("API error during batch translation: %s", api_exc)
                if not await _handle_retry(attempt, self.max_retries, self.base_delay, "batch", api_exc):
                    return {}
                continue

            if not await _handle_retry(attempt, self.max_retries, self.base_delay, "batch_validation"):
                return {}
        return {}

    async def translate_batch(self, texts: List[str], context: str) -> BatchTranslation:
        """
        Translate ``texts`` in token-bounded batches.

        Strings the batch answer leaves out are retried one at a time; those
        that still fail are reported in ``failures``.
        """
        result = BatchTranslation()
        if self.client is None:
            for text in texts:
                result.failures[text] = "AI translation is not configured (OPENAI_API_KEY missing)"
            return result

        context_tokens = count_tokens(context, self.config.model_name)
        token_budget = max(1, self.config.max_model_tokens - RESERVED_PROMPT_TOKENS - context_tokens)
        for chunk in chunk_texts(texts, self.config.batch_size, token_budget, self.config.model_name):
            answered = await self._request_batch(chunk, context)
            for text in chunk:
                if text in answered:
                    result.translations[text] = clean_translated_text(answered[text], text)
                    continue
                try:
                    result.translations[text] = await self.translate_text(text, context)
                except TranslationRequestFailure as failure:
                    result.failures[text] = failure.reason
        return result
