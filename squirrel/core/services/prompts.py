"""
Prompts shared by the AI providers.

Tagging:
- TAG_PROMPT: single-turn prompt for models without a system role
- TAG_SYSTEM_PROMPT: system message for chat models

Question answering:
- LOCAL_ANSWER_PROMPT: short prompt for small on-device models
- ANSWER_PROMPT: single-turn prompt for hosted models
- ANSWER_SYSTEM_PROMPT: system message for chat models
"""

from typing import Optional

LOCAL_CONTEXT_LIMIT = 2000
REMOTE_CONTEXT_LIMIT = 4000

TAG_SYSTEM_PROMPT = "Extract 3-5 meaningful keywords/tags. Output ONLY comma-separated words, no explanations."

TAG_PROMPT = """Extract 3-5 meaningful keywords/tags from this text. Output ONLY comma-separated words, no explanations:

{content}"""


LOCAL_ANSWER_PROMPT = """Answer based on these notes. Be concise. If not in notes, say "No info found."

Notes:
{context}

Q: {question}
A:"""


ANSWER_SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions based on the user's saved notes. "
    "Answer naturally and conversationally. If the question is about what content they have, "
    "describe it clearly. If comparing items, explain the differences. "
    "Be specific and reference the actual content from the notes."
)

ANSWER_PROMPT = """You are a helpful assistant that answers questions based on the user's saved notes.

Context (user's saved notes):
{context}

User Question: {question}

Instructions:
- Answer naturally and conversationally
- If the question is about what content they have, describe it clearly
- If comparing items, explain the differences
- If no relevant information exists, say "I don't have any notes about that."
- Be specific and reference the actual content from the notes

Answer:"""


ANSWER_USER_PROMPT = """Context (user's saved notes):
{context}

User Question: {question}"""


def with_context(prompt: str, context: Optional[str] = None) -> str:
    """Prefixes a completion prompt with optional context."""
    if context:
        return f"Context: {context}\n\n{prompt}"
    return prompt
