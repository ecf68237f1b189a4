"""
Groq adapter.

Groq serves open models behind an OpenAI compatible endpoint.
"""

from __future__ import annotations

from llm_relay.adapters.openai import VanillaOpenAI

BASE_URL = "https://api.groq.com/openai/v1/"

LLAMA3_70B = "llama3-70b-8192"

KNOWN_MODELS = [LLAMA3_70B]


class GroqModel(VanillaOpenAI):
    """
    Groq adapter.

    Example:
        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=..., base_url=BASE_URL)
        model = GroqModel(client, LLAMA3_70B)
    """

    supports_image_inputs = False
