import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .classification.categories import CategoryTable, get_category_table
from .classification.errors import (
    MalformedResponse,
    NotJsonResponse,
    RateLimited,
    TransportError,
)
from .config import Settings, get_settings
from .models import ListInfo, RepoBase

logger = logging.getLogger("starflow.ai")

DEFAULT_RETRY_AFTER_SECONDS = 30.0
NEW_LIST_NAME_MAX = 15
ERROR_BODY_MAX = 800

_REASON_DEFAULTS = {"zh": "AI 建议", "en": "AI suggestion"}

_KEYWORD_HINTS = {
    "zh": (
        "- proxy/clash/v2ray/vpn/翻墙 → {1}\n"
        "- AI/LLM/GPT/机器学习/chatbot → {0}\n"
        "- docker/k8s/CI/CD/部署 → {6}\n"
        "- vim/vscode/IDE/编辑 → {7}\n"
        "- cli/terminal/命令行 → {2}\n"
        "- react/vue/前端/css/html → {3}\n"
        "- express/fastapi/后端/api → {4}\n"
        "- database/redis/mysql → {5}\n"
        "- download/下载/aria2 → {9}\n"
        "- video/audio/图片/媒体 → {10}\n"
        "- security/加密/密码 → {11}\n"
        "- 教程/学习/awesome → {12}\n"
        "- 系统/windows/linux/mac → {13}\n"
        "- 通用开发工具 → {8}\n"
        "- 无法分类 → {14}"
    ),
    "en": (
        "- proxy/clash/v2ray/vpn → {1}\n"
        "- AI/LLM/GPT/machine learning/chatbot → {0}\n"
        "- docker/k8s/CI/CD/deploy → {6}\n"
        "- vim/vscode/IDE/editing → {7}\n"
        "- cli/terminal/command line → {2}\n"
        "- react/vue/frontend/css/html → {3}\n"
        "- express/fastapi/backend/api → {4}\n"
        "- database/redis/mysql → {5}\n"
        "- download/aria2 → {9}\n"
        "- video/audio/image/media → {10}\n"
        "- security/encryption/password → {11}\n"
        "- tutorial/learning/awesome → {12}\n"
        "- system/windows/linux/mac → {13}\n"
        "- general developer tools → {8}\n"
        "- cannot classify → {14}"
    ),
}


@dataclass(frozen=True)
class Suggestion:
    matched_list_id: Optional[int]
    matched_list_name: Optional[str]
    confidence: float
    propose_new_list: bool
    new_list_name: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched_list_id": self.matched_list_id,
            "matched_list_name": self.matched_list_name,
            "confidence": self.confidence,
            "propose_new_list": self.propose_new_list,
            "new_list_name": self.new_list_name,
            "reason": self.reason,
        }


# ---------------------------------------------------------------------------
# Secret masking
# ---------------------------------------------------------------------------

_SENSITIVE_KEYS = {
    "api_key",
    "apikey",
    "authorization",
    "access_token",
    "token",
    "secret",
    "password",
    "x-api-key",
}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        if len(value) <= 4:
            return "****"
        return f"{value[:2]}***{value[-2:]}"
    return "***"


def _mask_sensitive_payload(payload: Any) -> Any:
    if isinstance(payload, dict):
        masked: Dict[str, Any] = {}
        for key, value in payload.items():
            if str(key).lower() in _SENSITIVE_KEYS:
                masked[key] = _mask_value(value)
            else:
                masked[key] = _mask_sensitive_payload(value)
        return masked
    if isinstance(payload, list):
        return [_mask_sensitive_payload(item) for item in payload]
    return payload


def _mask_secrets_in_text(text: str) -> str:
    masked = text
    masked = re.sub(r"(?i)(authorization\s*[:=]\s*bearer\s+)[^\s\"']+", r"\1***", masked)
    masked = re.sub(r"(?i)(x-api-key\s*[:=]\s*)[^\s\"']+", r"\1***", masked)
    masked = re.sub(r"(?i)(api_key\s*[:=]\s*)[^\s\"']+", r"\1***", masked)
    masked = re.sub(r"\bsk-[A-Za-z0-9\-]{8,}\b", "sk-***", masked)
    return masked


def _sanitize_response_body(text: str) -> str:
    if not text:
        return ""
    trimmed = text.strip()
    if not trimmed:
        return ""
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        detail = _mask_secrets_in_text(trimmed)
    else:
        try:
            detail = json.dumps(_mask_sensitive_payload(parsed), ensure_ascii=False)
        except (TypeError, ValueError):
            detail = _mask_secrets_in_text(trimmed)
    if len(detail) > ERROR_BODY_MAX:
        detail = detail[:ERROR_BODY_MAX] + "..."
    return detail


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def _repair_truncated_object(snippet: str) -> Optional[str]:
    """Close an object cut off mid-stream by dropping its last, incomplete field.

    Only possible when the last comma comes after the last colon, i.e. the
    truncation happened inside a value that follows a complete field.
    """
    if snippet.count("{") <= snippet.count("}"):
        return snippet
    last_comma = snippet.rfind(",")
    last_colon = snippet.rfind(":")
    if last_comma > last_colon:
        return snippet[:last_comma] + "}"
    return None


def _extract_json(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    candidate = text.strip()
    if candidate.startswith("```"):
        parts = candidate.split("```")
        if len(parts) >= 3:
            candidate = parts[1].strip()
        else:
            candidate = candidate.strip("`").strip()
        if candidate.lower().startswith("json"):
            candidate = candidate[4:].strip()
    try:
        parsed = json.loads(candidate)
        return parsed if isinstance(parsed, dict) else None
    except json.JSONDecodeError:
        pass

    start = candidate.find("{")
    if start == -1:
        return None
    end = candidate.rfind("}")
    snippet = candidate[start : end + 1] if end > start else candidate[start:]
    repaired = _repair_truncated_object(snippet)
    if repaired is None:
        return None
    try:
        parsed = json.loads(repaired)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _parse_retry_after(value: Optional[str]) -> float:
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        seconds = float(value.strip())
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if seconds < 0:
        return DEFAULT_RETRY_AFTER_SECONDS
    return seconds


def _shorten_list_name(name: str) -> str:
    if len(name) <= NEW_LIST_NAME_MAX:
        return name
    words = [word for word in re.split(r"[\s&,]+", name) if word]
    first = words[0] if words else name
    return first[:NEW_LIST_NAME_MAX]


def _coerce_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.5
    if confidence < 0 or confidence > 1:
        return 0.5
    return confidence


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes")


def build_suggestion(
    parsed: Dict[str, Any],
    lists: Sequence[ListInfo],
    locale: str = "zh",
) -> Suggestion:
    list_name = str(parsed.get("listName") or "").strip()
    propose_new = _coerce_bool(parsed.get("suggestNewList"))

    matched: Optional[ListInfo] = None
    if list_name and not propose_new:
        lowered = list_name.lower()
        matched = next((item for item in lists if item.name.lower() == lowered), None)

    new_name = str(parsed.get("newListName") or "").strip() or None
    if new_name:
        new_name = _shorten_list_name(new_name)

    reason = str(parsed.get("reason") or "").strip() or _REASON_DEFAULTS.get(locale, "AI suggestion")
    return Suggestion(
        matched_list_id=matched.id if matched else None,
        matched_list_name=matched.name if matched else None,
        confidence=_coerce_confidence(parsed.get("confidence")),
        propose_new_list=propose_new,
        new_list_name=new_name,
        reason=reason[:500],
    )


# ---------------------------------------------------------------------------
# Request building
# ---------------------------------------------------------------------------

def _normalize_base_url(provider: str, base_url: str) -> str:
    if not base_url:
        if provider == "anthropic":
            return "https://api.anthropic.com/v1"
        return "https://api.openai.com/v1"
    normalized = base_url.strip().rstrip("/")
    if normalized.endswith("/chat/completions"):
        normalized = normalized[: -len("/chat/completions")]
    if provider != "anthropic" and not normalized.endswith("/v1"):
        normalized = f"{normalized}/v1"
    return normalized


def _headers(provider: str, settings: Settings) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if provider == "anthropic":
        if settings.ai_api_key:
            headers["x-api-key"] = settings.ai_api_key
        headers["anthropic-version"] = "2023-06-01"
    else:
        if settings.ai_api_key:
            headers["Authorization"] = f"Bearer {settings.ai_api_key}"
    if settings.ai_headers_json:
        try:
            extra = json.loads(settings.ai_headers_json)
            if isinstance(extra, dict):
                headers.update({str(k): str(v) for k, v in extra.items()})
        except json.JSONDecodeError:
            logger.warning("AI_HEADERS_JSON is not valid JSON; ignoring it")
    return headers


def build_prompt(
    repo: RepoBase,
    lists: Sequence[ListInfo],
    locale: str,
    table: CategoryTable,
) -> str:
    categories = table.names(locale)
    hints = _KEYWORD_HINTS.get(locale, _KEYWORD_HINTS["en"]).format(*categories)
    topics = ", ".join(repo.topics)
    if locale == "zh":
        lists_text = "\n".join(f"{i + 1}. {item.name}" for i, item in enumerate(lists)) or "（暂无）"
        readme = f"\nREADME 摘要:\n{repo.readme_summary}\n" if repo.readme_summary else ""
        return (
            "# 仓库分类任务\n\n"
            "## 待分类仓库\n"
            f"名称: {repo.full_name}\n"
            f"描述: {repo.description or '（无描述）'}\n"
            f"语言: {repo.language or '未知'}\n"
            f"Topics: {topics or '（无）'}{readme}\n\n"
            "## 用户现有 Lists\n"
            f"{lists_text}\n\n"
            "## 标准分类（必须从以下选择）\n"
            f"{'、'.join(categories)}\n\n"
            "## 分类规则（严格遵守）\n"
            "1. 优先匹配现有 List：如果用户已有相关 List，必须使用现有 List\n"
            "2. 否则使用标准分类：从上面的标准分类中选择最合适的\n"
            "3. 禁止创建新分类名称：只能使用现有 List 名称或标准分类名称\n\n"
            f"关键词对应：\n{hints}\n\n"
            "## 输出（仅 JSON）\n"
            '{"listName": "现有 List 名称（精确匹配）或 null", "suggestNewList": true, '
            '"newListName": "标准分类名称", "confidence": 0.8, "reason": "一句话"}'
        )
    lists_text = "\n".join(f"{i + 1}. {item.name}" for i, item in enumerate(lists)) or "(none)"
    readme = f"\nREADME summary:\n{repo.readme_summary}\n" if repo.readme_summary else ""
    return (
        "# Repository classification\n\n"
        "## Repository\n"
        f"Name: {repo.full_name}\n"
        f"Description: {repo.description or '(no description)'}\n"
        f"Language: {repo.language or 'unknown'}\n"
        f"Topics: {topics or '(none)'}{readme}\n\n"
        "## Existing lists\n"
        f"{lists_text}\n\n"
        "## Standard categories (choose from these)\n"
        f"{', '.join(categories)}\n\n"
        "## Rules\n"
        "1. Prefer an existing list when one fits.\n"
        "2. Otherwise pick the best standard category.\n"
        "3. Never invent other category names.\n\n"
        f"Keyword hints:\n{hints}\n\n"
        "## Output (JSON only)\n"
        '{"listName": "exact existing list name or null", "suggestNewList": true, '
        '"newListName": "standard category name", "confidence": 0.8, "reason": "one sentence"}'
    )


class AIClient:
    def __init__(self, client: httpx.AsyncClient, semaphore: asyncio.Semaphore) -> None:
        self._client = client
        self._semaphore = semaphore

    def _endpoint(self, settings: Settings) -> tuple[str, str]:
        raw_provider = settings.ai_provider.strip().lower()
        if raw_provider in ("", "none"):
            raise ValueError("AI_PROVIDER is not configured")
        provider = "anthropic" if raw_provider == "anthropic" else "openai"
        base_url = _normalize_base_url(provider, settings.ai_base_url)
        if provider == "anthropic":
            return provider, f"{base_url}/messages"
        return provider, f"{base_url}/chat/completions"

    def _payload(self, provider: str, settings: Settings, prompt: str, max_tokens: int) -> Dict[str, Any]:
        model = settings.ai_model or ("gpt-3.5-turbo" if provider == "openai" else "")
        if not model:
            raise ValueError("AI_MODEL is required for classification")
        return {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": settings.ai_temperature,
        }

    async def _post(self, url: str, headers: Dict[str, str], payload: Dict[str, Any], timeout: int) -> httpx.Response:
        try:
            async with self._semaphore:
                return await self._client.post(url, headers=headers, json=payload, timeout=timeout)
        except httpx.RequestError as exc:
            raise TransportError(f"AI API request failed: {exc.__class__.__name__}: {exc} | url={url}") from exc

    async def classify_repo(
        self,
        repo: RepoBase,
        lists: Sequence[ListInfo],
        locale: Optional[str] = None,
        table: Optional[CategoryTable] = None,
    ) -> Suggestion:
        if not repo.id or not repo.full_name:
            raise ValueError("Repository identity is required for classification")
        settings = get_settings()
        locale = locale or settings.ai_locale
        table = table or get_category_table()
        provider, url = self._endpoint(settings)
        payload = self._payload(
            provider, settings, build_prompt(repo, lists, locale, table), settings.ai_max_tokens
        )

        response = await self._post(url, _headers(provider, settings), payload, settings.ai_timeout)
        content_type = response.headers.get("content-type", "").lower()

        if response.status_code == 429:
            raise RateLimited(_parse_retry_after(response.headers.get("retry-after")))
        if "text/html" in content_type:
            raise NotJsonResponse(
                f"AI API returned an HTML page (status {response.status_code}); check the endpoint URL | url={url}"
            )
        if response.is_error:
            detail = _sanitize_response_body(response.text)
            raise TransportError(f"AI API error: {response.status_code} | url={url} | body={detail}")
        if "json" not in content_type:
            raise NotJsonResponse(
                f"AI API returned a non-JSON response ({content_type or 'no content type'}); check the endpoint URL"
            )

        try:
            data = response.json()
        except ValueError as exc:
            detail = _sanitize_response_body(response.text)
            raise NotJsonResponse(
                f"AI response JSON decode failed (status {response.status_code}) | url={url} | body={detail}"
            ) from exc

        text, finish_reason = self._content(provider, data)
        if not text:
            raise MalformedResponse("AI returned an empty response; check the model")
        if finish_reason in ("length", "max_tokens"):
            logger.warning("AI response for %s was truncated; attempting repair", repo.full_name)

        parsed = _extract_json(text)
        if parsed is None:
            raise MalformedResponse(f"Failed to parse AI response: {_mask_secrets_in_text(text)[:ERROR_BODY_MAX]}")
        return build_suggestion(parsed, lists, locale)

    @staticmethod
    def _content(provider: str, data: Any) -> tuple[str, Optional[str]]:
        if not isinstance(data, dict):
            return "", None
        if provider == "anthropic":
            text = ""
            for block in data.get("content") or []:
                if isinstance(block, dict) and block.get("type") == "text":
                    text += block.get("text", "")
            return text, data.get("stop_reason")
        choices: List[Any] = data.get("choices") or []
        first = choices[0] if choices and isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        return str(message.get("content") or ""), first.get("finish_reason")

    async def test_connection(self) -> bool:
        settings = get_settings()
        try:
            provider, url = self._endpoint(settings)
            payload = self._payload(provider, settings, "hi", 1)
            response = await self._post(url, _headers(provider, settings), payload, settings.ai_timeout)
        except (ValueError, TransportError) as exc:
            logger.warning("AI connection test failed: %s", exc)
            return False
        return response.is_success
