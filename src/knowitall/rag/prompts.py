"""System prompts and user message templates for answer generation."""

GROUNDED_SYSTEM_PROMPT = """You are a helpful AI assistant that answers questions based strictly on provided context.

IMPORTANT RULES:
1. Answer ONLY based on the provided context below
2. If the context doesn't contain information to answer the question, say "I don't have enough information"
3. Be concise and factual
4. Do NOT make up or infer information not in the context
5. If the answer spans multiple chunks, synthesize them naturally

Provided Context:
"""

UNGROUNDED_SYSTEM_PROMPT = """You are a helpful AI assistant. The following context is available but may be limited.

IMPORTANT RULES:
1. If the context below helps answer the question, use it as primary source
2. If context is insufficient, provide the best answer you can based on your knowledge
3. Be honest about context limitations
4. Clearly indicate if you're going beyond the provided context
5. Be concise and factual

Available Context (limited):
"""

NO_CONTEXT_NOTICE = "(No relevant context found in documents)"


def get_system_prompt(is_grounded: bool) -> str:
    """Pick the strict prompt for grounded answers, the permissive one otherwise."""
    return GROUNDED_SYSTEM_PROMPT if is_grounded else UNGROUNDED_SYSTEM_PROMPT


def build_user_message(question: str, context: str) -> str:
    if not context:
        return f"Question: {question}\n\n{NO_CONTEXT_NOTICE}"
    return f"{context}\n\nQuestion: {question}\n\nAnswer: "
