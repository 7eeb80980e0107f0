"""
Prompt templates for the docqa generators.

Keeping templates in a separate module makes them easy to iterate on
without touching generation logic.
"""

# ---------------------------------------------------------------------------
# Main system prompt (local FAISS retrieval)
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """\
You are a helpful assistant that answers questions based on the provided context.
Use the context below to answer the user's question. If the answer cannot be \
found in the context, say so.
Always cite which source number(s) you used (e.g., [1], [2]).

Context:
{context}
"""

# ---------------------------------------------------------------------------
# Per-source header inside the context block
# ---------------------------------------------------------------------------

SOURCE_TEMPLATE = "[{index}] From {document_name} (chunk {chunk_index}):\n{text}"

# ---------------------------------------------------------------------------
# Hosted file-search prompt (OpenAI vector store)
# ---------------------------------------------------------------------------

FILE_SEARCH_PROMPT = (
    "You are a retrieval assistant. Answer strictly using the retrieved files. "
    "Include brief citations by filename when possible."
)

# ---------------------------------------------------------------------------
# Fallback when the index is empty
# ---------------------------------------------------------------------------

NO_CONTEXT_RESPONSE = (
    "I could not find any uploaded documents to answer your question. "
    "Ingest some text files first, then ask again."
)
