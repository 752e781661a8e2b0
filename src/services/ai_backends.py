"""
Chat-completion backends used by the verifier and the summarizer.

`OpenAIChatBackend` talks to the hosted API; `LocalModelBackend` runs a Hugging Face
causal LM on the local machine for offline runs.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import openai

LOGGER = logging.getLogger(__name__)

DEFAULT_LOCAL_MODEL_ID = os.getenv("LOCAL_MODEL_ID", "Qwen/Qwen2.5-7B-Instruct")


@dataclass
class Completion:
    content: str
    total_tokens: int | None = None


class ChatBackend:
    """Abstract interface for a single system+user chat exchange."""

    name: str

    def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.0,
        json_schema: dict[str, Any] | None = None,
    ) -> Completion:
        raise NotImplementedError


class OpenAIChatBackend(ChatBackend):
    def __init__(self, model: str = "gpt-4o", api_key: str | None = None, client: Any = None) -> None:
        self.name = "openai"
        self.model = model
        if client is None:
            client = openai.OpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"))
        self.client = client

    def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.0,
        json_schema: dict[str, Any] | None = None,
    ) -> Completion:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }
        if json_schema:
            kwargs["response_format"] = {"type": "json_schema", "json_schema": json_schema}
        completion = self.client.chat.completions.create(**kwargs)
        content = completion.choices[0].message.content if completion.choices else ""
        usage = getattr(completion, "usage", None)
        return Completion(content=content or "", total_tokens=getattr(usage, "total_tokens", None))


class LocalModelBackend(ChatBackend):
    """Local HF model wrapper; JSON schemas are passed to the model as prompt text."""

    def __init__(
        self,
        model_id: str = DEFAULT_LOCAL_MODEL_ID,
        max_new_tokens: int = 400,
        repetition_penalty: float = 1.05,
    ) -> None:
        import torch
        from transformers import AutoModelForCausalLM, AutoTokenizer

        self.name = "local"
        dtype = torch.bfloat16 if torch.cuda.is_available() else torch.float32
        self.tokenizer = AutoTokenizer.from_pretrained(model_id)
        self.model = AutoModelForCausalLM.from_pretrained(
            model_id,
            torch_dtype=dtype,
            device_map="auto",
        )
        self.max_new_tokens = max_new_tokens
        self.repetition_penalty = repetition_penalty

    def build_prompt(self, system: str, user: str, json_schema: dict[str, Any] | None = None) -> str:
        schema_clause = ""
        if json_schema:
            schema_clause = "\nJSON schema:\n" + json.dumps(json_schema.get("schema", json_schema)) + "\n"
        messages = [
            {"role": "system", "content": system + schema_clause},
            {"role": "user", "content": user},
        ]
        if getattr(self.tokenizer, "chat_template", None):
            return self.tokenizer.apply_chat_template(messages, tokenize=False, add_generation_prompt=True)
        return f"{system}{schema_clause}\n\n{user}\n\nJSON:"

    def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.0,
        json_schema: dict[str, Any] | None = None,
    ) -> Completion:
        prompt = self.build_prompt(system, user, json_schema)
        inputs = self.tokenizer(prompt, return_tensors="pt").to(self.model.device)
        prompt_tokens = int(inputs["input_ids"].shape[-1])
        outputs = self.model.generate(
            **inputs,
            max_new_tokens=self.max_new_tokens,
            do_sample=temperature > 0,
            temperature=temperature if temperature > 0 else None,
            repetition_penalty=self.repetition_penalty,
            eos_token_id=self.tokenizer.eos_token_id,
            pad_token_id=self.tokenizer.pad_token_id,
        )
        generated = outputs[0][prompt_tokens:]
        decoded = self.tokenizer.decode(generated, skip_special_tokens=True)
        return Completion(content=decoded.strip(), total_tokens=prompt_tokens + int(generated.shape[-1]))


def build_backend(name: str, model: str) -> ChatBackend:
    if name == "local":
        return LocalModelBackend(model_id=model if "/" in model else DEFAULT_LOCAL_MODEL_ID)
    if name != "openai":
        LOGGER.warning("Unknown AI_BACKEND %r; falling back to openai.", name)
    return OpenAIChatBackend(model=model)


def extract_json_object(text: str) -> dict[str, Any]:
    """Best-effort JSON object extraction tolerant of code fences and surrounding prose."""
    if not text:
        return {}
    trimmed = text.strip()
    if trimmed.startswith("```"):
        trimmed = trimmed.strip("`")
        if trimmed.lower().startswith("json"):
            trimmed = trimmed[4:]
        trimmed = trimmed.strip()
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return {}
    try:
        parsed = json.loads(trimmed[start : end + 1])
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
