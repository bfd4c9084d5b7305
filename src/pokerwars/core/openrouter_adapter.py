"""OpenRouter adapter, the default gateway for seat model ids.

Model ids use OpenRouter's "provider/model" form (e.g.
"anthropic/claude-sonnet-4", "openai/gpt-4o"). Optional attribution
headers identify the tournament to OpenRouter.
"""

from pokerwars.core.openai_adapter import OpenAIAdapter

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterAdapter(OpenAIAdapter):
    """Adapter for OpenRouter via its OpenAI-compatible API."""

    def __init__(
        self,
        model_id: str,
        api_key: str,
        temperature: float = 0.0,
        site_url: str | None = None,
        app_name: str | None = None,
        base_url: str | None = None,
    ):
        headers: dict[str, str] = {}
        if site_url:
            headers["HTTP-Referer"] = site_url
        if app_name:
            headers["X-Title"] = app_name

        super().__init__(
            model_id=model_id,
            api_key=api_key,
            base_url=base_url or OPENROUTER_BASE_URL,
            temperature=temperature,
            extra_headers=headers or None,
        )

    def _is_reasoning_model(self) -> bool:
        # OpenRouter normalizes max_tokens/temperature for every upstream
        return False
