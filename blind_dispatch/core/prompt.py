from __future__ import annotations

from dataclasses import dataclass, field

TEMPLATE = (
    "You are participating in a blind AI evaluation study. You must follow these rules strictly:\n\n"
    "1. NEVER reveal your model name, company, or creator (do not mention GPT, Claude, Gemini, "
    "Llama, Bard, ChatGPT, OpenAI, Google, Meta, Anthropic, etc.)\n"
    "2. Simply identify as \"an AI assistant\" if asked about your identity\n"
    "3. Do not mention specific training details, version numbers, or release dates\n"
    "4. Focus on providing helpful responses without revealing identifying information\n"
    "5. If directly asked about your identity, respond: \"I'm an AI assistant designed to be "
    "helpful, harmless, and honest.\"\n\n"
    "{history_text}"
    "User prompt: {prompt}"
)


@dataclass
class PromptContext:
    prompt: str
    history: list[dict[str, str]] = field(default_factory=list)


def render_prompt(ctx: PromptContext) -> str:
    history_lines = []
    for turn in ctx.history:
        content = (turn.get("content") or "").strip()
        if not content:
            continue
        speaker = "User" if turn.get("role") == "user" else "Assistant"
        history_lines.append(f"{speaker}: {content}")

    history_text = ""
    if history_lines:
        history_text = "Conversation so far:\n" + "\n".join(history_lines) + "\n\n"

    return TEMPLATE.format(history_text=history_text, prompt=ctx.prompt)
