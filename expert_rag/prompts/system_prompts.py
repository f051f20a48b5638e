"""
Centralized system prompts.

Production rule:
NEVER hardcode prompts inside workflow or model client.
Always import from here.
"""


DEFAULT_EXPERT_SYSTEM_PROMPT = """
You are a helpful assistant. Answer clearly and accurately.
"""


CONTEXT_PREAMBLE = """
The following excerpts come from documents the user uploaded for this
conversation. Use them when they are relevant to the question. If they do
not contain the answer, rely on your own knowledge and say so.
"""
